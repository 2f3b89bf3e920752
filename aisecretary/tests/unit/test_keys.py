from __future__ import annotations

from datetime import datetime, timezone
import re

import pytest

from aisecretary.core.errors import ValidationError
from aisecretary.persistence.keys import (
    KIND_TASK,
    cancellation_key,
    executive_key,
    generate_entity_id,
    index_key,
    ledger_key,
    primary_key,
    reminder_key,
    tenant_collection_key,
    tenant_info_key,
    usage_key,
    user_directory_key,
)


def test_key_shapes() -> None:
    assert primary_key("t1", KIND_TASK, "task_1") == "tenant:t1:task:task_1"
    assert index_key("t1", KIND_TASK, "due", "2026-10-20") == "tenant:t1:idx:task:due:2026-10-20"
    assert ledger_key("tenant:t1:task:task_1") == "tenant:t1:task:task_1:indexes"
    assert tenant_info_key("t1") == "tenant:t1:info"
    assert tenant_collection_key("t1", "messages") == "tenant:t1:messages"
    assert user_directory_key("U1") == "user:U1"
    assert usage_key("t1", "2026-10", "message") == "tenant:t1:usage:2026-10:message"
    assert executive_key("t1", "E1", "thinking") == "tenant:t1:executive:E1:thinking"
    assert reminder_key("t1", "task_1", 1760000000) == "tenant:t1:reminder:1760000000:task_1"
    assert cancellation_key("t1", "event_1") == "tenant:t1:event:event_1:cancellation"


def test_primary_and_index_keys_never_collide() -> None:
    assert primary_key("t1", "idx", "x") != index_key("t1", "idx", "x", "y")
    assert not primary_key("t1", KIND_TASK, "due").startswith("tenant:t1:idx:")


@pytest.mark.parametrize(
    "build",
    [
        lambda: primary_key("t:1", KIND_TASK, "a"),
        lambda: primary_key("t1", KIND_TASK, "a:b"),
        lambda: index_key("t1", KIND_TASK, "due", "2026:10"),
        lambda: primary_key("", KIND_TASK, "a"),
        lambda: user_directory_key("U:1"),
    ],
)
def test_separator_and_empty_components_rejected(build) -> None:
    with pytest.raises(ValidationError):
        build()


def test_generated_ids_carry_kind_millis_and_suffix() -> None:
    now = datetime(2026, 10, 19, 1, 0, tzinfo=timezone.utc)
    entity_id = generate_entity_id("task", now)
    assert re.fullmatch(rf"task_{int(now.timestamp() * 1000)}_[a-z0-9]{{9}}", entity_id)
    assert generate_entity_id("task", now) != entity_id
