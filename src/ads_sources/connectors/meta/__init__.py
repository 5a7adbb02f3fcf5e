"""Meta Marketing (Graph) API connector."""
