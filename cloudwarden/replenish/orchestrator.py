"""
Replenish orchestrator — provisions one replacement instance per invocation.

    received -> credential-selected -> instance-requested -> succeeded | failed

The audit log row is written in ``pending`` before any provider call and is
always moved to ``success`` or ``failed`` before ``trigger`` returns or
raises. Notifications are best-effort and never touch the log.

There is no deduplication here: two invocations for the same dead instance
provision two replacements. Automatic triggers are deduplicated upstream by
cloudwarden.replenish.guard.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import string
import time
from dataclasses import dataclass
from typing import Any

from cloudwarden.errors import (
    AccessDenied,
    CredentialNotFound,
    NoHealthyCredential,
    ProviderCreateFailure,
    TemplateNotFound,
    ValidationError,
)
from cloudwarden.interfaces import CloudProviderClient, CredentialStore, SecretDecryptor
from cloudwarden.keys.providers import get_profile
from cloudwarden.models import (
    CreatedInstance,
    Credential,
    HealthStatus,
    InstanceSpec,
    InstanceTemplate,
    ReplenishConfig,
    ReplenishStatus,
    TriggerType,
)
from cloudwarden.notify.dispatcher import DeliveryResult, NotificationDispatcher
from cloudwarden.notify.messages import format_replenish_failure, format_replenish_success

logger = logging.getLogger(__name__)

# Never used in generated passwords
AMBIGUOUS = set("0O1lI")
UPPER = "".join(c for c in string.ascii_uppercase if c not in AMBIGUOUS)
LOWER = "".join(c for c in string.ascii_lowercase if c not in AMBIGUOUS)
DIGITS = "".join(c for c in string.digits if c not in AMBIGUOUS)
SYMBOLS = "!@#$%^&*"
MIN_PASSWORD_LENGTH = 16
DEFAULT_CREATE_TIMEOUT = 120.0


def generate_password(length: int = MIN_PASSWORD_LENGTH) -> str:
    """Random root password with every character class and no ambiguous characters."""
    length = max(length, MIN_PASSWORD_LENGTH)
    classes = (UPPER, LOWER, DIGITS, SYMBOLS)
    alphabet = "".join(classes)
    chars = [secrets.choice(c) for c in classes]
    chars += [secrets.choice(alphabet) for _ in range(length - len(chars))]
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)


def generate_instance_name(provider: str) -> str:
    """e.g. ``do-auto-48213907``: provider prefix, clock digits, two random digits."""
    prefix = get_profile(provider).instance_prefix
    stamp = str(time.time_ns() // 1_000_000)[-6:]
    return f"{prefix}-{stamp}{secrets.randbelow(100):02d}"


@dataclass(frozen=True)
class ReplenishRequest:
    user_id: int
    template_id: int
    credential_id: int | None = None
    trigger_type: TriggerType = TriggerType.MANUAL
    # Restricts auto-selection to these credentials (a task's pool) instead of the user's group
    candidate_ids: tuple[int, ...] | None = None
    task_id: int | None = None
    task_name: str | None = None
    original_instance_id: str | None = None
    original_instance_name: str | None = None
    original_credential_id: int | None = None


@dataclass(frozen=True)
class ReplenishOutcome:
    log_id: int
    instance: CreatedInstance
    root_password: str
    credential_id: int
    notification: DeliveryResult | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "log_id": self.log_id,
            "instance": {
                "id": self.instance.id,
                "name": self.instance.name,
                "ipv4": self.instance.ipv4,
                "ipv6": self.instance.ipv6,
                "status": self.instance.status,
            },
            "root_password": self.root_password,
            "credential_id": self.credential_id,
        }


class ReplenishOrchestrator:
    def __init__(
        self,
        store: CredentialStore,
        client: CloudProviderClient,
        decryptor: SecretDecryptor,
        dispatcher: NotificationDispatcher,
        *,
        create_timeout: float = DEFAULT_CREATE_TIMEOUT,
    ) -> None:
        self.store = store
        self.client = client
        self.decryptor = decryptor
        self.dispatcher = dispatcher
        self.create_timeout = create_timeout

    async def trigger(self, request: ReplenishRequest) -> ReplenishOutcome:
        template = self._resolve_template(request)
        explicit = self._resolve_explicit_credential(request, template)

        log_id = self.store.create_replenish_log(
            user_id=request.user_id,
            trigger_type=request.trigger_type,
            template_id=template.id,
            task_id=request.task_id,
            original_instance_id=request.original_instance_id,
            original_instance_name=request.original_instance_name,
            original_credential_id=request.original_credential_id,
        )
        logger.info(
            "Replenish %s started for user %s (template %s, trigger %s)",
            log_id,
            request.user_id,
            template.id,
            request.trigger_type.value,
        )

        try:
            credential = explicit or self._select_credential(request, template)
        except NoHealthyCredential as e:
            self._finish_failed(log_id, e.message)
            await self._notify_failure(request, template, e.message)
            raise NoHealthyCredential(e.message, log_id=log_id) from None
        except Exception as e:
            self._finish_failed(log_id, str(e))
            await self._notify_failure(request, template, str(e))
            raise

        root_password = template.root_password or generate_password()
        spec = InstanceSpec(
            name=generate_instance_name(template.provider),
            region=template.region,
            image=template.image,
            size=template.plan,
            root_password=root_password,
            disk_size=template.disk_size,
            enable_ipv6=template.enable_ipv6,
            ssh_keys=tuple(template.ssh_keys),
            tags=tuple(template.tags),
            user_data=template.user_data,
        )

        try:
            secret = self.decryptor.decrypt(credential.encrypted_secret)
            async with asyncio.timeout(self.create_timeout):
                instance = await self.client.create_instance(template.provider, secret, spec)
        except Exception as e:
            if isinstance(e, TimeoutError):
                message = f"create_instance timed out after {self.create_timeout:g}s"
            else:
                message = str(e) or type(e).__name__
            logger.error("Replenish %s failed creating %s: %s", log_id, spec.name, message)
            self._finish_failed(log_id, message, new_credential_id=credential.id)
            await self._notify_failure(request, template, message)
            raise ProviderCreateFailure(message, log_id=log_id) from e
        except BaseException:
            # Cancelled from outside: the log must not stay pending
            logger.warning("Replenish %s interrupted while creating %s", log_id, spec.name)
            self._finish_failed(log_id, "interrupted while creating the instance", new_credential_id=credential.id)
            raise

        self.store.finish_replenish_log(
            log_id,
            ReplenishStatus.SUCCESS,
            new_instance_id=str(instance.id),
            new_instance_name=instance.name,
            new_credential_id=credential.id,
            new_ipv4=instance.ipv4,
            new_ipv6=instance.ipv6,
            root_password=root_password,
            details={
                "provider": template.provider,
                "region": template.region,
                "plan": template.plan,
                "image": template.image,
                "task_name": request.task_name,
            },
        )
        logger.info("Replenish %s succeeded: %s (%s)", log_id, instance.name, instance.id)

        notification = await self._notify_success(request, template, instance, root_password)
        return ReplenishOutcome(
            log_id=log_id,
            instance=instance,
            root_password=root_password,
            credential_id=credential.id,
            notification=notification,
        )

    # ─── Resolution ─────────────────────────────────────────────────────

    def _resolve_template(self, request: ReplenishRequest) -> InstanceTemplate:
        template = self.store.get_template(request.template_id)
        if template is None:
            raise TemplateNotFound(f"template {request.template_id} not found", field="template_id")
        if template.user_id != request.user_id:
            raise AccessDenied(f"template {request.template_id} is not owned by this user", field="template_id")
        return template

    def _resolve_explicit_credential(
        self, request: ReplenishRequest, template: InstanceTemplate
    ) -> Credential | None:
        if request.credential_id is None:
            return None
        credential = self.store.get_credential(request.credential_id)
        if credential is None:
            raise CredentialNotFound(f"credential {request.credential_id} not found", field="credential_id")
        if credential.user_id != request.user_id:
            raise AccessDenied(
                f"credential {request.credential_id} is not owned by this user", field="credential_id"
            )
        if credential.provider != template.provider:
            raise ValidationError(
                f"credential {credential.id} is a {credential.provider} key but the template needs {template.provider}",
                field="credential_id",
            )
        return credential

    def _select_credential(self, request: ReplenishRequest, template: InstanceTemplate) -> Credential:
        """First healthy credential for the template's provider, in store order."""
        if request.candidate_ids is not None:
            pool = [self.store.get_credential(cid) for cid in request.candidate_ids]
            candidates = [c for c in pool if c is not None and c.user_id == request.user_id]
            scope = "task pool"
        else:
            config = self._config_for(request.user_id)
            candidates = [
                c for c in self.store.list_credentials(request.user_id) if c.group == config.credential_group
            ]
            scope = f"group '{config.credential_group}'"

        for credential in candidates:
            if credential.provider == template.provider and credential.health_status == HealthStatus.HEALTHY:
                logger.debug("Selected credential %s from %s", credential.id, scope)
                return credential
        raise NoHealthyCredential(f"no healthy {template.provider} credential in {scope}")

    def _config_for(self, user_id: int) -> ReplenishConfig:
        return self.store.get_replenish_config(user_id) or ReplenishConfig.defaults(user_id)

    # ─── Log & notifications ────────────────────────────────────────────

    def _finish_failed(self, log_id: int, message: str, **fields: Any) -> None:
        self.store.finish_replenish_log(log_id, ReplenishStatus.FAILED, error_message=message, **fields)

    async def _notify(self, user_id: int, message_builder) -> DeliveryResult | None:
        try:
            if not self._config_for(user_id).notify:
                return None
            user = self.store.get_user(user_id)
            destination = self.dispatcher.user_destination(user) if user is not None else None
            if destination is None:
                return None
            message = message_builder()
        except Exception as e:
            logger.warning("Skipping replenish notification for user %s: %s", user_id, e)
            return None
        return await self.dispatcher.send(destination, message)

    async def _notify_success(
        self,
        request: ReplenishRequest,
        template: InstanceTemplate,
        instance: CreatedInstance,
        root_password: str,
    ) -> DeliveryResult | None:
        return await self._notify(
            request.user_id,
            lambda: format_replenish_success(
                trigger_type=request.trigger_type,
                template=template,
                instance=instance,
                root_password=root_password,
                original_instance=request.original_instance_name or request.original_instance_id,
                task_name=request.task_name,
            ),
        )

    async def _notify_failure(
        self, request: ReplenishRequest, template: InstanceTemplate, error: str
    ) -> DeliveryResult | None:
        return await self._notify(
            request.user_id,
            lambda: format_replenish_failure(
                trigger_type=request.trigger_type,
                error=error,
                template=template,
                original_instance=request.original_instance_name or request.original_instance_id,
                task_name=request.task_name,
            ),
        )
