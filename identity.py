"""
Cognito identity client.

The job receives the user's Discord ID and refresh token on the command
line. They are exchanged for an access token here, which is what the
Cognito profile store uses to read and write the user's attributes.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from dataclasses import dataclass, field

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from errors import AuthError

_log = logging.getLogger(__name__)


@dataclass
class CognitoCredentials:
    refresh_token: str = field(repr=False)
    access_token: str = field(default="", repr=False)
    id_token: str = field(default="", repr=False)
    token_expiration: int = 0  # seconds


@dataclass
class CognitoUser:
    discord_id: str
    credentials: CognitoCredentials
    cognito_id: str = ""
    discord_username: str = ""
    email: str = ""
    account_enabled: bool = True


def make_secret_hash(user_id: str, client_id: str, client_secret: str) -> str:
    """SECRET_HASH Cognito expects alongside every auth request made by a
    client that has a secret."""
    digest = hmac.new(
        client_secret.encode("utf-8"),
        (user_id + client_id).encode("utf-8"),
        hashlib.sha256,
    ).digest()
    return base64.b64encode(digest).decode("ascii")


class CognitoIdentity:
    def __init__(self, user_pool_id: str, client_id: str, client_secret: str, client=None):
        self.user_pool_id = user_pool_id
        self.client_id = client_id
        self.client_secret = client_secret
        self._client = client or boto3.client("cognito-idp")

    def authenticate(self, discord_id: str, refresh_token: str) -> CognitoUser:
        try:
            auth = self._client.admin_initiate_auth(
                UserPoolId=self.user_pool_id,
                ClientId=self.client_id,
                AuthFlow="REFRESH_TOKEN_AUTH",
                AuthParameters={
                    "REFRESH_TOKEN": refresh_token,
                    "SECRET_HASH": make_secret_hash(discord_id, self.client_id, self.client_secret),
                },
            )
            user = self._client.admin_get_user(UserPoolId=self.user_pool_id, Username=discord_id)
        except (ClientError, BotoCoreError) as exc:
            _log.error("user %s could not be authenticated: %s", discord_id, exc)
            raise AuthError(f"user {discord_id} could not be authenticated: {exc}") from exc

        attributes = {a["Name"]: a.get("Value", "") for a in user.get("UserAttributes", [])}
        result = auth["AuthenticationResult"]

        # Disabled users are still authenticated; the web app handles re-auth
        return CognitoUser(
            discord_id=attributes.get("custom:discord_id", discord_id),
            discord_username=attributes.get("custom:discord_username", ""),
            email=attributes.get("email", ""),
            cognito_id=attributes.get("sub", ""),
            account_enabled=user.get("Enabled", True),
            credentials=CognitoCredentials(
                refresh_token=refresh_token,
                access_token=result["AccessToken"],
                id_token=result.get("IdToken", ""),
                token_expiration=result.get("ExpiresIn", 0),
            ),
        )

    def get_user_attributes(self, access_token: str) -> dict[str, str]:
        try:
            user = self._client.get_user(AccessToken=access_token)
        except (ClientError, BotoCoreError) as exc:
            _log.error("could not get user with access token: %s", exc)
            raise AuthError("could not get user with access token") from exc
        return {a["Name"]: a.get("Value", "") for a in user.get("UserAttributes", [])}

    def update_user_attributes(self, access_token: str, attributes: dict[str, str]) -> None:
        try:
            self._client.update_user_attributes(
                AccessToken=access_token,
                UserAttributes=[{"Name": k, "Value": v} for k, v in attributes.items()],
            )
        except (ClientError, BotoCoreError) as exc:
            _log.error("could not update user attributes with access token: %s", exc)
            raise AuthError(f"could not update user attributes with access token: {exc}") from exc
