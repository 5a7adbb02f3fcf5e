"""Runtime configuration: dotenv loading, logging setup and gateway settings."""
