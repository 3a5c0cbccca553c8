"""AWS client management and session handling."""

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError, NoCredentialsError, PartialCredentialsError
from typing import Optional, Dict, Any
from dataclasses import dataclass
from nestdeploy.utils.errors import CredentialError, ErrorContext, InputError, error_handler
from nestdeploy.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class AWSCredentials:
    """AWS credential information."""
    account_id: str
    user_arn: str
    region: str
    profile: Optional[str] = None


class AWSClientManager:
    """Manages the boto3 session and the clients an attempt needs."""

    def __init__(
        self,
        profile: Optional[str] = None,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None
    ):
        """Initialize AWS client manager.

        Args:
            profile: AWS profile name to use
            region: AWS region to use
            endpoint_url: Endpoint override (e.g. a local emulator)
        """
        self.profile = profile
        self.region = region
        self.endpoint_url = endpoint_url
        self._session: Optional[boto3.Session] = None
        self._clients: Dict[str, Any] = {}
        self._credentials: Optional[AWSCredentials] = None

        # Service calls are not retried by the attempt itself, botocore's
        # standard mode only absorbs throttling and transient 5xx responses
        self._boto_config = Config(
            retries={
                'mode': 'standard',
                'max_attempts': 3
            },
            connect_timeout=10,
            read_timeout=60
        )

    @property
    def session(self) -> boto3.Session:
        """Get or create boto3 session.

        Returns:
            Configured boto3 session
        """
        if self._session is None:
            kwargs = {}
            if self.profile:
                kwargs['profile_name'] = self.profile
            if self.region:
                kwargs['region_name'] = self.region

            self._session = boto3.Session(**kwargs)
            logger.info(f"Created AWS session - Region: {self._session.region_name}, "
                        f"Profile: {self.profile or 'default'}")

        return self._session

    def get_client(self, service_name: str):
        """Get boto3 client for a service.

        Args:
            service_name: AWS service name (e.g., 's3', 'cloudformation')

        Returns:
            Boto3 client for the service
        """
        if service_name in self._clients:
            return self._clients[service_name]

        if self.session.region_name is None:
            raise InputError(
                'No AWS region configured',
                suggestions=['Pass --region or set AWS_REGION / AWS_DEFAULT_REGION']
            )

        config = self._boto_config
        if service_name == 's3' and self.endpoint_url:
            # Emulators rarely resolve virtual-hosted bucket names
            config = config.merge(Config(s3={'addressing_style': 'path'}))

        kwargs = {'config': config}
        if self.endpoint_url:
            kwargs['endpoint_url'] = self.endpoint_url

        client = self.session.client(service_name, **kwargs)
        self._clients[service_name] = client

        logger.debug(f"Created {service_name} client")

        return client

    def validate_credentials(self) -> AWSCredentials:
        """Validate AWS credentials and return credential information.

        Returns:
            AWSCredentials object with account and user information

        Raises:
            CredentialError: If credentials are missing or rejected
        """
        if self._credentials is not None:
            return self._credentials

        try:
            identity = self.get_client('sts').get_caller_identity()
        except (NoCredentialsError, PartialCredentialsError, ClientError) as e:
            raise error_handler.wrap(
                e,
                CredentialError,
                ErrorContext(operation='validate_credentials', aws_service='sts'),
                message='Failed to validate AWS credentials'
            ) from e

        self._credentials = AWSCredentials(
            account_id=identity['Account'],
            user_arn=identity['Arn'],
            region=self.session.region_name,
            profile=self.profile
        )

        logger.info(f"AWS credentials validated - Account: {self._credentials.account_id}, "
                    f"Region: {self._credentials.region}")

        return self._credentials
