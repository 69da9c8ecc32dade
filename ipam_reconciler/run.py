import uvicorn

from ipam_reconciler.config.settings import setup_logging, SERVER_HOST, SERVER_PORT


def main():
    logger = setup_logging()
    logger.info("Starting IPAM reconciler server...")

    uvicorn.run(
        "ipam_reconciler.app:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        log_level="info"
    )


if __name__ == "__main__":
    main()
