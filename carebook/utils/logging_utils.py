import logging


def setup_logger(name: str) -> logging.Logger:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    )
    logger = logging.getLogger(name)
    # redis-py is chatty about reconnects; our own wrapper logs failures
    logging.getLogger("redis").setLevel(logging.WARNING)
    return logger
