"""Outbound side: rate-limited, retrying access to the Meta Graph API."""
