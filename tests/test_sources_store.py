from __future__ import annotations

import base64
from pathlib import Path

import pytest

from lodestone.errors import InvalidTransition, SourceNotFound
from lodestone.sources import (
    DocumentSource,
    KnowledgeSource,
    SourceStatus,
    SourceStore,
    SourceType,
    TextSource,
    UpdateInterval,
    VideoSource,
    WebsiteSource,
)


def test_knowledge_base_is_created_once_per_agent(tmp_path: Path) -> None:
    store = SourceStore(tmp_path)

    first = store.create_source("acme", TextSource(text="Refunds take five days."))
    second = store.create_source("acme", WebsiteSource(url="https://acme.test"))

    knowledge_base = store.get_knowledge_base("acme")
    assert knowledge_base is not None
    assert knowledge_base.name == "acme Knowledge Base"
    assert first.knowledge_base_id == second.knowledge_base_id == knowledge_base.id
    assert store.get_knowledge_base("globex") is None


def test_new_sources_start_processing_with_derived_origin(tmp_path: Path) -> None:
    store = SourceStore(tmp_path)

    text = store.create_source("acme", TextSource(text="\n\nWarranty terms\nTwo years.", update_interval=UpdateInterval.WEEKLY))
    titled = store.create_source("acme", TextSource(text="body", title="  Pricing FAQ "))
    site = store.create_source("acme", WebsiteSource(url="https://acme.test", crawl_subpages=True))
    video = store.create_source("acme", VideoSource(url="https://video.test/watch?v=1"))

    assert text.status is SourceStatus.PROCESSING
    assert text.type is SourceType.TEXT
    assert text.origin == "Warranty terms"
    assert text.update_interval is UpdateInterval.WEEKLY
    assert titled.origin == "Pricing FAQ"
    assert site.crawl_subpages is True
    assert video.type is SourceType.VIDEO
    assert [source.id for source in store.list_sources("acme")] == [text.id, titled.id, site.id, video.id]


def test_ready_transition_requires_fragments(tmp_path: Path) -> None:
    store = SourceStore(tmp_path)
    source = store.create_source("acme", TextSource(text="x"))

    with pytest.raises(InvalidTransition):
        store.mark_ready("acme", source.id, fragment_count=0)

    ready = store.mark_ready("acme", source.id, fragment_count=4)
    assert ready.status is SourceStatus.READY
    assert ready.fragment_count == 4
    assert ready.error_message is None
    assert store.ready_source_ids("acme") == [source.id]


def test_terminal_states_cannot_transition_again(tmp_path: Path) -> None:
    store = SourceStore(tmp_path)
    source = store.create_source("acme", TextSource(text="x"))
    store.mark_failed("acme", source.id, "Could not fetch")

    with pytest.raises(InvalidTransition):
        store.mark_ready("acme", source.id, fragment_count=3)
    with pytest.raises(InvalidTransition):
        store.mark_failed("acme", source.id, "again")


def test_failed_sources_always_carry_a_message(tmp_path: Path) -> None:
    store = SourceStore(tmp_path)
    source = store.create_source("acme", TextSource(text="x"))

    failed = store.mark_failed("acme", source.id, "   ")

    assert failed.status is SourceStatus.FAILED
    assert failed.error_message == "Ingestion failed"
    assert store.ready_source_ids("acme") == []


def test_unknown_sources_raise_not_found(tmp_path: Path) -> None:
    store = SourceStore(tmp_path)
    store.create_source("acme", TextSource(text="x"))

    with pytest.raises(SourceNotFound):
        store.mark_ready("acme", "missing", fragment_count=1)
    with pytest.raises(SourceNotFound):
        store.mark_failed("globex", "missing", "boom")


def test_records_persist_across_store_instances(tmp_path: Path) -> None:
    source = SourceStore(tmp_path).create_source("acme", WebsiteSource(url="https://acme.test"))
    SourceStore(tmp_path).mark_ready("acme", source.id, fragment_count=2)

    reloaded = SourceStore(tmp_path).get_source("acme", source.id)

    assert reloaded is not None
    assert reloaded.status is SourceStatus.READY
    assert reloaded.fragment_count == 2
    assert SourceStore(tmp_path).find_source(source.id) == reloaded


def test_delete_source_removes_record(tmp_path: Path) -> None:
    store = SourceStore(tmp_path)
    source = store.create_source("acme", TextSource(text="x"))

    assert store.delete_source("acme", source.id) is True
    assert store.delete_source("acme", source.id) is False
    assert store.get_source("acme", source.id) is None
    assert store.find_source(source.id) is None


@pytest.mark.parametrize("agent_id", ["", "../etc", "a/b", " spaced"])
def test_invalid_agent_ids_are_rejected(tmp_path: Path, agent_id: str) -> None:
    with pytest.raises(ValueError):
        SourceStore(tmp_path).list_sources(agent_id)


def test_source_round_trips_through_dict() -> None:
    source = KnowledgeSource(
        id="s1",
        knowledge_base_id="kb1",
        agent_id="acme",
        type=SourceType.DOCUMENT,
        origin="manual.pdf",
        status=SourceStatus.FAILED,
        created_at="2024-01-01T00:00:00+00:00",
        updated_at="2024-01-01T00:00:01+00:00",
        error_message="File has not been decrypted",
    )

    data = source.to_dict()

    assert data["type"] == "DOCUMENT"
    assert data["status"] == "FAILED"
    assert KnowledgeSource.from_dict(data) == source


def test_document_source_requires_exactly_one_payload() -> None:
    with pytest.raises(ValueError):
        DocumentSource(filename="a.pdf")
    with pytest.raises(ValueError):
        DocumentSource(filename="a.pdf", data=b"x", url="https://acme.test/a.pdf")


def test_document_source_from_data_url() -> None:
    value = "data:text/csv;base64," + base64.b64encode(b"a,b\n1,2").decode("ascii")

    spec = DocumentSource.from_data_url("grid.csv", value)

    assert spec.data == b"a,b\n1,2"
    assert spec.content_type == "text/csv"
    assert spec.origin == "grid.csv"
