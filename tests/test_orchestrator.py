"""Tests for ReplenishOrchestrator."""

from __future__ import annotations

import asyncio
import html
import string

import pytest

from cloudwarden.errors import (
    AccessDenied,
    CredentialNotFound,
    NoHealthyCredential,
    ProviderCreateFailure,
    ProviderError,
    TemplateNotFound,
    ValidationError,
)
from cloudwarden.models import (
    CredentialGroup,
    HealthStatus,
    ReplenishConfig,
    ReplenishStatus,
    TriggerType,
)
from cloudwarden.replenish.orchestrator import (
    AMBIGUOUS,
    SYMBOLS,
    ReplenishOrchestrator,
    ReplenishRequest,
    generate_instance_name,
    generate_password,
)


@pytest.fixture
def seeded(store):
    store.add_user(1, "alice", notify_enabled=True, telegram_chat_id="100")
    store.add_user(2, "bob")
    store.add_template(10, user_id=1)
    return store


class TestPasswordAndName:
    def test_password_has_every_class(self):
        for _ in range(50):
            password = generate_password()
            assert len(password) >= 16
            assert any(c in string.ascii_uppercase for c in password)
            assert any(c in string.ascii_lowercase for c in password)
            assert any(c in string.digits for c in password)
            assert any(c in SYMBOLS for c in password)
            assert not set(password) & AMBIGUOUS

    def test_short_length_is_raised_to_minimum(self):
        assert len(generate_password(4)) == 16

    def test_instance_name_prefix(self):
        assert generate_instance_name("digitalocean").startswith("do-auto-")
        assert generate_instance_name("linode").startswith("ln-auto-")
        assert generate_instance_name("azure").startswith("az-auto-")
        assert generate_instance_name("vultr").startswith("auto-")


class TestResolution:
    @pytest.mark.asyncio
    async def test_missing_template(self, seeded, orchestrator):
        with pytest.raises(TemplateNotFound):
            await orchestrator.trigger(ReplenishRequest(user_id=1, template_id=99))
        assert seeded.logs == {}

    @pytest.mark.asyncio
    async def test_foreign_template(self, seeded, orchestrator):
        with pytest.raises(AccessDenied):
            await orchestrator.trigger(ReplenishRequest(user_id=2, template_id=10))
        assert seeded.logs == {}

    @pytest.mark.asyncio
    async def test_explicit_credential_must_exist(self, seeded, orchestrator):
        with pytest.raises(CredentialNotFound):
            await orchestrator.trigger(ReplenishRequest(user_id=1, template_id=10, credential_id=5))

    @pytest.mark.asyncio
    async def test_explicit_credential_must_be_owned(self, seeded, orchestrator):
        seeded.add_credential(5, user_id=2, health_status=HealthStatus.HEALTHY)
        with pytest.raises(AccessDenied):
            await orchestrator.trigger(ReplenishRequest(user_id=1, template_id=10, credential_id=5))
        assert seeded.logs == {}

    @pytest.mark.asyncio
    async def test_explicit_credential_must_match_provider(self, seeded, orchestrator):
        seeded.add_credential(5, user_id=1, provider="linode")
        with pytest.raises(ValidationError):
            await orchestrator.trigger(ReplenishRequest(user_id=1, template_id=10, credential_id=5))

    @pytest.mark.asyncio
    async def test_explicit_credential_used_even_if_not_healthy(self, seeded, client, orchestrator):
        seeded.add_credential(5, user_id=1, health_status=HealthStatus.UNKNOWN)
        outcome = await orchestrator.trigger(ReplenishRequest(user_id=1, template_id=10, credential_id=5))
        assert outcome.credential_id == 5
        assert client.created[0][1] == "secret-5"


class TestSelection:
    @pytest.mark.asyncio
    async def test_picks_the_healthy_credential(self, seeded, client, orchestrator):
        seeded.add_credential(1, user_id=1, health_status=HealthStatus.UNHEALTHY)
        seeded.add_credential(2, user_id=1, health_status=HealthStatus.HEALTHY)
        outcome = await orchestrator.trigger(ReplenishRequest(user_id=1, template_id=10))
        assert outcome.credential_id == 2
        assert client.created[0][1] == "secret-2"

    @pytest.mark.asyncio
    async def test_selection_is_deterministic(self, seeded, orchestrator):
        for cid in (3, 4, 5):
            seeded.add_credential(cid, user_id=1, health_status=HealthStatus.HEALTHY)
        picks = [
            (await orchestrator.trigger(ReplenishRequest(user_id=1, template_id=10))).credential_id
            for _ in range(3)
        ]
        assert picks == [3, 3, 3]

    @pytest.mark.asyncio
    async def test_selection_respects_group_and_provider(self, seeded, orchestrator):
        seeded.add_credential(1, user_id=1, health_status=HealthStatus.HEALTHY, group=CredentialGroup.RENTAL)
        seeded.add_credential(2, user_id=1, health_status=HealthStatus.HEALTHY, provider="linode")
        seeded.add_credential(3, user_id=1, health_status=HealthStatus.HEALTHY)
        outcome = await orchestrator.trigger(ReplenishRequest(user_id=1, template_id=10))
        assert outcome.credential_id == 3

    @pytest.mark.asyncio
    async def test_configured_group_is_used(self, seeded, orchestrator):
        seeded.configs[1] = ReplenishConfig(user_id=1, credential_group=CredentialGroup.RENTAL)
        seeded.add_credential(1, user_id=1, health_status=HealthStatus.HEALTHY)
        seeded.add_credential(2, user_id=1, health_status=HealthStatus.HEALTHY, group=CredentialGroup.RENTAL)
        outcome = await orchestrator.trigger(ReplenishRequest(user_id=1, template_id=10))
        assert outcome.credential_id == 2

    @pytest.mark.asyncio
    async def test_candidate_pool_overrides_group(self, seeded, orchestrator):
        seeded.add_credential(1, user_id=1, health_status=HealthStatus.HEALTHY)
        seeded.add_credential(2, user_id=1, health_status=HealthStatus.HEALTHY, group=CredentialGroup.RENTAL)
        seeded.add_credential(3, user_id=2, health_status=HealthStatus.HEALTHY)
        outcome = await orchestrator.trigger(
            ReplenishRequest(user_id=1, template_id=10, candidate_ids=(3, 2))
        )
        assert outcome.credential_id == 2

    @pytest.mark.asyncio
    async def test_no_healthy_credential_fails_the_log(self, seeded, client, notifier, orchestrator):
        seeded.add_credential(1, user_id=1, health_status=HealthStatus.UNHEALTHY)
        seeded.add_credential(2, user_id=1, health_status=HealthStatus.LIMITED)

        with pytest.raises(NoHealthyCredential) as exc_info:
            await orchestrator.trigger(ReplenishRequest(user_id=1, template_id=10))

        log = seeded.logs[exc_info.value.log_id]
        assert log.status == ReplenishStatus.FAILED
        assert "no healthy digitalocean credential" in log.error_message
        assert client.created == []
        assert len(notifier.sent_to("100")) == 1
        assert "failed" in notifier.sent_to("100")[0]


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_success_records_everything(self, seeded, notifier, orchestrator):
        seeded.add_credential(2, user_id=1, health_status=HealthStatus.HEALTHY)
        outcome = await orchestrator.trigger(
            ReplenishRequest(
                user_id=1,
                template_id=10,
                trigger_type=TriggerType.INSTANCE_DOWN,
                original_instance_id="old-1",
            )
        )

        log = seeded.logs[outcome.log_id]
        assert log.status == ReplenishStatus.SUCCESS
        assert log.trigger_type == TriggerType.INSTANCE_DOWN
        assert log.original_instance_id == "old-1"
        assert log.new_instance_id == outcome.instance.id
        assert log.new_credential_id == 2
        assert log.new_ipv4 == outcome.instance.ipv4
        assert log.root_password == outcome.root_password
        assert log.details["region"] == "nyc3"
        assert outcome.notification is not None and outcome.notification.delivered
        assert html.escape(outcome.root_password, quote=False) in notifier.sent_to("100")[0]

    @pytest.mark.asyncio
    async def test_template_password_is_used(self, seeded, client, orchestrator):
        seeded.templates[10].root_password = "Fixed-Pa55word!"
        seeded.add_credential(2, user_id=1, health_status=HealthStatus.HEALTHY)
        outcome = await orchestrator.trigger(ReplenishRequest(user_id=1, template_id=10))
        assert outcome.root_password == "Fixed-Pa55word!"
        assert client.created[0][2].root_password == "Fixed-Pa55word!"

    @pytest.mark.asyncio
    async def test_spec_comes_from_template(self, seeded, client, orchestrator):
        template = seeded.templates[10]
        template.ssh_keys = ["ab:cd"]
        template.enable_ipv6 = True
        template.user_data = "#!/bin/sh\necho hi"
        seeded.add_credential(2, user_id=1, health_status=HealthStatus.HEALTHY)
        await orchestrator.trigger(ReplenishRequest(user_id=1, template_id=10))
        provider, _, spec = client.created[0]
        assert provider == "digitalocean"
        assert spec.region == "nyc3"
        assert spec.size == "s-1vcpu-1gb"
        assert spec.image == "ubuntu-22-04-x64"
        assert spec.ssh_keys == ("ab:cd",)
        assert spec.enable_ipv6 is True
        assert spec.user_data.startswith("#!/bin/sh")

    @pytest.mark.asyncio
    async def test_create_failure_preserves_message(self, seeded, client, notifier, orchestrator):
        seeded.add_credential(2, user_id=1, health_status=HealthStatus.HEALTHY)
        client.create_error = ProviderError("droplet limit of 10 reached", 422)

        with pytest.raises(ProviderCreateFailure) as exc_info:
            await orchestrator.trigger(ReplenishRequest(user_id=1, template_id=10))

        assert isinstance(exc_info.value.__cause__, ProviderError)
        log = seeded.logs[exc_info.value.log_id]
        assert log.status == ReplenishStatus.FAILED
        assert log.error_message == "droplet limit of 10 reached"
        assert "droplet limit of 10 reached" in notifier.sent_to("100")[0]

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_touch_log(self, seeded, notifier, orchestrator):
        notifier.fail_for.add("100")
        seeded.add_credential(2, user_id=1, health_status=HealthStatus.HEALTHY)
        outcome = await orchestrator.trigger(ReplenishRequest(user_id=1, template_id=10))
        assert seeded.logs[outcome.log_id].status == ReplenishStatus.SUCCESS
        assert outcome.notification is not None
        assert outcome.notification.delivered is False

    @pytest.mark.asyncio
    async def test_notify_opt_out(self, seeded, notifier, orchestrator):
        seeded.configs[1] = ReplenishConfig(user_id=1, notify=False)
        seeded.add_credential(2, user_id=1, health_status=HealthStatus.HEALTHY)
        outcome = await orchestrator.trigger(ReplenishRequest(user_id=1, template_id=10))
        assert outcome.notification is None
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_never_left_pending(self, seeded, client, orchestrator):
        seeded.add_credential(1, user_id=1, health_status=HealthStatus.HEALTHY)
        seeded.add_credential(2, user_id=1, health_status=HealthStatus.HEALTHY, encrypted_secret="garbage")

        await orchestrator.trigger(ReplenishRequest(user_id=1, template_id=10))
        with pytest.raises(ProviderCreateFailure):
            await orchestrator.trigger(ReplenishRequest(user_id=1, template_id=10, credential_id=2))
        client.create_error = RuntimeError("boom")
        with pytest.raises(ProviderCreateFailure):
            await orchestrator.trigger(ReplenishRequest(user_id=1, template_id=10))
        seeded.credentials[1].health_status = HealthStatus.UNHEALTHY
        seeded.credentials[2].health_status = HealthStatus.UNHEALTHY
        with pytest.raises(NoHealthyCredential):
            await orchestrator.trigger(ReplenishRequest(user_id=1, template_id=10))

        assert len(seeded.logs) == 4
        assert all(log.status != ReplenishStatus.PENDING for log in seeded.logs.values())

    @pytest.mark.asyncio
    async def test_one_log_per_invocation(self, seeded, client, orchestrator):
        seeded.add_credential(2, user_id=1, health_status=HealthStatus.HEALTHY)
        request = ReplenishRequest(user_id=1, template_id=10, original_instance_id="dead")
        await orchestrator.trigger(request)
        await orchestrator.trigger(request)
        assert len(seeded.logs) == 2
        assert len(client.created) == 2

    @pytest.mark.asyncio
    async def test_create_timeout_fails_the_log(self, seeded, client, notifier, store, decryptor, dispatcher):
        seeded.add_credential(2, user_id=1, health_status=HealthStatus.HEALTHY)
        client.create_delay = 10
        orchestrator = ReplenishOrchestrator(store, client, decryptor, dispatcher, create_timeout=0.01)

        with pytest.raises(ProviderCreateFailure, match="timed out") as exc_info:
            await orchestrator.trigger(ReplenishRequest(user_id=1, template_id=10))

        log = seeded.logs[exc_info.value.log_id]
        assert log.status == ReplenishStatus.FAILED
        assert log.error_message == "create_instance timed out after 0.01s"
        assert "timed out" in notifier.sent_to("100")[0]

    @pytest.mark.asyncio
    async def test_cancelled_create_fails_the_log(self, seeded, client, notifier, orchestrator):
        seeded.add_credential(2, user_id=1, health_status=HealthStatus.HEALTHY)
        client.create_delay = 10

        with pytest.raises(TimeoutError):
            await asyncio.wait_for(orchestrator.trigger(ReplenishRequest(user_id=1, template_id=10)), 0.05)

        log = seeded.logs[1]
        assert log.status == ReplenishStatus.FAILED
        assert log.error_message == "interrupted while creating the instance"
        assert log.new_credential_id == 2
        assert notifier.sent == []
