def load_env_file() -> None:
    """Load variables from a local .env file without overwriting the environment.

    WHAT:
        Reads backend/.env (or the nearest .env found by python-dotenv).
    WHY:
        Local development keeps DATABASE_URL and API secrets in .env while
        deployed workers get them from the real environment.
    """
    import logging
    from dotenv import load_dotenv

    logger = logging.getLogger(__name__)

    if load_dotenv(override=False):
        logger.info("[ENV] Loaded local .env file (existing variables kept)")
    else:
        logger.debug("[ENV] No local .env file found")
