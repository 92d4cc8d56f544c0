"""
Authenticate with the client credentials or password grant and call an API.

Reads the provider configuration from the environment (a .env file works):

    OAUTH_CLIENT_ID, OAUTH_CLIENT_SECRET, OAUTH_TOKEN_URL
    OAUTH_USERNAME, OAUTH_PASSWORD   (optional, selects the password grant)
    CALLOUT_PATH                     (resource path, e.g. /services/data)
"""

import asyncio
import json
import logging
import os

from dotenv import load_dotenv

from passage.auth.models.config import FlowConfig
from passage.auth.models.credentials import (
    ClientCredentialsGrant,
    PasswordCredentials,
)
from passage.auth.models.errors import OAuth2Error
from passage.auth.oauth_client import OAuth2Client
from passage.callout.client import CalloutClient


async def main() -> None:
    config = FlowConfig.from_env("OAUTH_")

    username = os.getenv("OAUTH_USERNAME")
    if username:
        credentials = PasswordCredentials(
            username=username, password=os.getenv("OAUTH_PASSWORD", "")
        )
    else:
        credentials = ClientCredentialsGrant()

    async with OAuth2Client(config) as oauth:
        result = await oauth.authenticate("example", credentials)
        if isinstance(result, OAuth2Error):
            logging.error(f"Authentication failed: {result}")
            return

        async with CalloutClient(oauth, "example") as callout:
            data = await callout.get(os.getenv("CALLOUT_PATH", "/"))
            print(json.dumps(data, indent=2))


if __name__ == "__main__":
    load_dotenv()
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
