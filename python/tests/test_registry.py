"""
Tests for the pollen registry state machine.
"""
import pytest

from pollen_wall.models.pollen import Model, PolledEvolution, PollenEvent, PollenStatus, Topic
from pollen_wall.registry import PollenRegistry

PROCESSING = PollenEvent(topic=Topic.PROCESSING, ref="Qm1")
DONE = PollenEvent(topic=Topic.DONE, ref="Qm2")
EVOLUTION = PolledEvolution(ref="QmImg", name="p_0003.jpg", size=3)


def applied_registry(**kwargs) -> PollenRegistry:
    registry = PollenRegistry(**kwargs)
    registry.upsert("J1", DONE)
    registry.mark_applied("J1", EVOLUTION)
    return registry


class TestInitialState:
    """Tests for first sightings."""

    def test_processing_creates_processing(self):
        registry = PollenRegistry()
        result = registry.upsert("J1", PROCESSING)

        assert result.created
        assert result.previous is None
        assert result.current == PollenStatus.PROCESSING
        assert registry.get("J1").current_iteration_ref == "Qm1"

    def test_done_creates_done(self):
        registry = PollenRegistry()
        assert registry.upsert("J1", DONE).current == PollenStatus.DONE

    def test_unknown_topic_is_rejected(self):
        registry = PollenRegistry()
        with pytest.raises(ValueError):
            registry.upsert("J1", PollenEvent(topic=Topic.UNKNOWN, ref="Qm"))
        assert len(registry) == 0


class TestTransitions:
    """Tests for the transition table."""

    @pytest.mark.parametrize("first,second,expected", [
        (PROCESSING, PROCESSING, PollenStatus.PROCESSING),
        (PROCESSING, DONE, PollenStatus.DONE),
        (DONE, PROCESSING, PollenStatus.PROCESSING),
        (DONE, DONE, PollenStatus.DONE),
    ])
    def test_table(self, first, second, expected):
        registry = PollenRegistry()
        registry.upsert("J1", first)
        result = registry.upsert("J1", second)

        assert not result.ignored
        assert result.current == expected
        assert registry.get("J1").status == expected
        assert len(registry) == 1

    def test_every_event_refreshes_ref_and_topic(self):
        registry = PollenRegistry()
        registry.upsert("J1", PROCESSING)
        registry.upsert("J1", DONE)

        pollen = registry.get("J1")
        assert pollen.current_iteration_ref == "Qm2"
        assert pollen.topic == Topic.DONE

    def test_metadata_is_kept_once_resolved(self):
        registry = PollenRegistry()
        registry.upsert("J1", PollenEvent(Topic.PROCESSING, "Qm1", Model.VIT_B32, "a bee", metadata_fetched=True))
        assert not registry.needs_metadata("J1")

        registry.upsert("J1", PollenEvent(Topic.PROCESSING, "Qm2"))

        pollen = registry.get("J1")
        assert pollen.model_type == Model.VIT_B32
        assert pollen.text_input == "a bee"

    def test_missing_metadata_is_filled_later(self):
        registry = PollenRegistry()
        registry.upsert("J1", PROCESSING)
        assert registry.needs_metadata("J1")

        registry.upsert("J1", PollenEvent(Topic.PROCESSING, "Qm2", Model.WIKI_ART, "a flower", metadata_fetched=True))

        assert registry.get("J1").model_type == Model.WIKI_ART
        assert not registry.needs_metadata("J1")

    def test_empty_metadata_lookup_counts_as_resolved(self):
        registry = PollenRegistry()
        registry.upsert("J1", PollenEvent(Topic.PROCESSING, "Qm1", text_input="a bee", metadata_fetched=True))

        assert not registry.needs_metadata("J1")
        assert registry.get("J1").model_type is None

    def test_processing_count(self):
        registry = PollenRegistry()
        registry.upsert("J1", PROCESSING)
        registry.upsert("J2", PROCESSING)
        registry.upsert("J3", DONE)

        assert registry.processing_count() == 2


class TestAppliedOnce:
    """Tests for duplicate handling after a pollen was applied."""

    def test_done_after_apply_is_ignored(self):
        registry = applied_registry()
        before = registry.get("J1")
        snapshot = (before.status, before.current_iteration_ref, before.topic)

        result = registry.upsert("J1", PollenEvent(Topic.DONE, "Qm3"))

        assert result.ignored
        after = registry.get("J1")
        assert (after.status, after.current_iteration_ref, after.topic) == snapshot

    def test_processing_after_apply_is_noop_without_attach(self):
        registry = applied_registry()
        result = registry.upsert("J1", PROCESSING)

        assert result.ignored
        assert registry.get("J1").status == PollenStatus.APPLIED_ONCE

    def test_processing_after_apply_reprimes_in_attach_mode(self):
        registry = applied_registry(attach_mode=True)
        result = registry.upsert("J1", PROCESSING)

        assert not result.ignored
        assert result.previous == PollenStatus.APPLIED_ONCE
        assert result.current == PollenStatus.PROCESSING

    def test_done_after_apply_can_be_reprocessed_by_policy(self):
        registry = applied_registry(ignore_done_after_apply=False)
        result = registry.upsert("J1", DONE)

        assert not result.ignored
        assert result.current == PollenStatus.DONE

    def test_mark_applied_records_evolution(self):
        registry = applied_registry()
        pollen = registry.get("J1")

        assert pollen.status == PollenStatus.APPLIED_ONCE
        assert pollen.last_polled_evolution == EVOLUTION


class TestRemoval:
    """Tests for removal and retired pollens."""

    def test_removed_applied_pollen_ignores_duplicates(self):
        registry = applied_registry()
        registry.remove("J1")
        assert "J1" not in registry

        for _ in range(3):
            assert registry.upsert("J1", DONE).ignored
        assert len(registry) == 0
        assert registry.retired("J1").last_polled_evolution == EVOLUTION

    def test_removed_applied_pollen_ignores_processing(self):
        registry = applied_registry()
        registry.remove("J1")

        assert registry.upsert("J1", PROCESSING).ignored
        assert len(registry) == 0

    def test_removing_unapplied_pollen_forgets_it(self):
        registry = PollenRegistry()
        registry.upsert("J1", PROCESSING)
        registry.remove("J1")

        assert not registry.is_retired("J1")
        assert registry.upsert("J1", DONE).created

    def test_remove_unknown_is_noop(self):
        assert PollenRegistry().remove("nope") is None
