"""
Form Builder Captcha — verification of submitter captcha tokens.

CaptchaVerifier is the narrow interface consumed by SubmissionStore.
ReCaptchaVerifier checks tokens against Google reCAPTCHA's siteverify
endpoint using httpx, with the secret taken from the tenant's settings.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

import httpx

from formbuilder.engine.errors import FormBuilderCaptchaError
from formbuilder.settings.models import Settings

logger = logging.getLogger("formbuilder.submissions.captcha")

DEFAULT_VERIFY_URL = "https://www.google.com/recaptcha/api/siteverify"


class CaptchaVerifier:
    """Returns True when the token proves a human submitter."""

    def verify(self, token: Optional[str]) -> bool:
        raise NotImplementedError


class NoCaptchaVerifier(CaptchaVerifier):
    """Accepts every token. Default when no verifier is configured."""

    def verify(self, token: Optional[str]) -> bool:
        return True


class ReCaptchaVerifier(CaptchaVerifier):
    """
    reCAPTCHA siteverify client.

    Args:
        settings_provider: returns the current tenant/locale Settings, or None.
        client:            httpx.Client to use (tests pass one with a MockTransport).
        verify_url:        siteverify endpoint.
        timeout:           request timeout in seconds.
    """

    def __init__(
        self,
        settings_provider: Callable[[], Optional[Settings]],
        client: Optional[httpx.Client] = None,
        verify_url: str = DEFAULT_VERIFY_URL,
        timeout: float = 10.0,
    ):
        self._settings_provider = settings_provider
        self._client = client
        self._verify_url = verify_url
        self._timeout = timeout

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=httpx.Timeout(self._timeout))
        return self._client

    def verify(self, token: Optional[str]) -> bool:
        settings = self._settings_provider()
        if settings is None or not settings.recaptcha.enabled:
            return True
        if not token:
            logger.info("Captcha token missing")
            return False
        if not settings.recaptcha.secret_key:
            raise FormBuilderCaptchaError(
                "reCAPTCHA is enabled but no secret key is configured",
                tenant=settings.tenant,
                locale=settings.locale,
            )

        try:
            response = self._get_client().post(
                self._verify_url,
                data={"secret": settings.recaptcha.secret_key, "response": token},
            )
            response.raise_for_status()
            result = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"reCAPTCHA verification request failed: {e}")
            raise FormBuilderCaptchaError(f"Captcha verification failed: {e}") from e

        if not isinstance(result, dict):
            raise FormBuilderCaptchaError("Captcha verification returned an unexpected payload")
        success = bool(result.get("success"))
        if not success:
            logger.info(f"reCAPTCHA rejected token: {result.get('error-codes')}")
        return success

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
