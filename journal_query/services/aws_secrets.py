"""
AWS Secrets Manager integration for secure key management.
Provides retrieval of the Supabase service-role key and the OpenAI API key.
"""
import json
import logging
import os
import boto3
from botocore.exceptions import ClientError, NoCredentialsError, PartialCredentialsError
from typing import Optional, Dict, Any, Iterable

logger = logging.getLogger(__name__)


class SecretsManager:
    """
    AWS Secrets Manager client for retrieving sensitive configuration.
    Provides caching and falls back to the supplied value when AWS is unavailable.
    """

    def __init__(self, region_name: str = None):
        self.region_name = region_name or os.getenv("AWS_REGION", os.getenv("AWS_DEFAULT_REGION", "ap-southeast-1"))
        self._client = None
        self._cache: Dict[str, str] = {}
        self._available = False

        try:
            self._client = boto3.client('secretsmanager', region_name=self.region_name)
            self._available = True
            logger.info(f"AWS Secrets Manager client initialized for region {self.region_name}")
        except NoCredentialsError:
            logger.warning("AWS credentials not found - falling back to environment variables")
        except PartialCredentialsError:
            logger.warning("Incomplete AWS credentials - falling back to environment variables")
        except Exception as e:
            logger.warning(f"Error initializing AWS Secrets Manager client: {e} - falling back to environment variables")

    @property
    def available(self) -> bool:
        """Check if AWS Secrets Manager is available and properly configured."""
        return self._available and self._client is not None

    def get_secret(self, secret_name: str, fallback_value: Optional[str] = None) -> Optional[str]:
        """
        Retrieve a secret string from AWS Secrets Manager with caching.

        Args:
            secret_name: Name or ARN of the secret
            fallback_value: Value to return if secret retrieval fails

        Returns:
            Secret value as string, or fallback_value if unavailable
        """
        if not self.available:
            logger.debug(f"AWS Secrets Manager unavailable, using fallback for {secret_name}")
            return fallback_value

        if secret_name in self._cache:
            return self._cache[secret_name]

        try:
            response = self._client.get_secret_value(SecretId=secret_name)
            if 'SecretString' in response:
                secret_value = response['SecretString']
                self._cache[secret_name] = secret_value
                logger.info(f"Retrieved secret {secret_name} from AWS Secrets Manager")
                return secret_value

        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            if error_code == 'ResourceNotFoundException':
                logger.warning(f"Secret {secret_name} not found in AWS Secrets Manager")
            elif error_code in ('AccessDeniedException', 'UnauthorizedOperation', 'TokenRefreshRequired'):
                logger.warning(f"AWS credentials issue for {secret_name}: {error_code}")
                # Stop retrying for the rest of the process
                self._available = False
            else:
                logger.warning(f"AWS error retrieving secret {secret_name}: {e}")
        except Exception as e:
            logger.warning(f"Unexpected error retrieving secret {secret_name}: {e}")

        return fallback_value

    def get_secret_json(self, secret_name: str) -> Dict[str, Any]:
        """Retrieve a secret and parse it as a JSON object (empty dict when unavailable)."""
        secret_value = self.get_secret(secret_name)
        if not secret_value:
            return {}

        try:
            parsed = json.loads(secret_value)
        except json.JSONDecodeError:
            logger.warning(f"Secret {secret_name} is not valid JSON")
            return {}
        return parsed if isinstance(parsed, dict) else {}

    def clear_cache(self):
        """Clear the secret cache."""
        self._cache.clear()
        logger.debug("Cleared AWS Secrets Manager cache")


_secrets_manager = None


def get_secrets_manager() -> SecretsManager:
    """Get or create the global AWS Secrets Manager instance."""
    global _secrets_manager
    if _secrets_manager is None:
        _secrets_manager = SecretsManager()
    return _secrets_manager


def get_environment_secret_name() -> str:
    """Map APP_ENV to the bundled secret that holds this service's keys."""
    app_env = os.getenv('APP_ENV', 'development').lower()

    if app_env == 'sit':
        return 'sit/journal-query/secret'
    if app_env in ('prd', 'production'):
        return 'prod/journal-query/secret'
    if app_env == 'development':
        return '/config/journal-query'

    logger.warning(f"Unknown environment '{app_env}', defaulting to SIT secret")
    return 'sit/journal-query/secret'


def _get_keyed_secret(key_names: Iterable[str], simple_name: str, fallback: Optional[str]) -> Optional[str]:
    """
    Look a key up in the environment bundle first, then in a dedicated secret.

    The bundle is a JSON object; the first matching entry of ``key_names`` wins.
    """
    secrets_manager = get_secrets_manager()
    bundle = secrets_manager.get_secret_json(get_environment_secret_name())

    for key_name in key_names:
        if bundle.get(key_name):
            logger.info(f"Extracted secret value from bundle (key: {key_name})")
            return bundle[key_name]

    return secrets_manager.get_secret(simple_name, fallback)


def get_openai_api_key(fallback_key: Optional[str] = None) -> Optional[str]:
    """Retrieve the OpenAI API key, falling back to ``fallback_key``."""
    return _get_keyed_secret(
        ('openai_api_key', 'OPENAI_API_KEY', 'openai_key'),
        'openai-api-key',
        fallback_key,
    )


def get_supabase_service_key(fallback_key: Optional[str] = None) -> Optional[str]:
    """Retrieve the Supabase service-role key, falling back to ``fallback_key``."""
    return _get_keyed_secret(
        ('supabase_service_role_key', 'SUPABASE_SERVICE_ROLE_KEY'),
        'supabase-service-role-key',
        fallback_key,
    )
