def load_env_file() -> None:
    """Load variables from a local .env file without overwriting the environment.

    WHAT:
        Reads backend/.env (or the nearest .env) into os.environ.
    WHY:
        Developers keep DATABASE_URL and TOKEN_ENCRYPTION_KEY in .env while
        deployed processes get them from the real environment, which must win.
    """
    import logging
    from dotenv import load_dotenv

    logger = logging.getLogger(__name__)

    # Returns True when a file was found, even if it set nothing.
    loaded = load_dotenv(override=False)

    if loaded:
        logger.info("Loaded local .env file (existing variables were NOT overwritten)")
    else:
        logger.debug("No local .env file found or loaded")
