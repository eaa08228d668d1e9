"""Microsoft Graph transport, models and resource client."""
