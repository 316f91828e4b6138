"""Tests for builder name generation and org-scoped logging."""

import logging
import random
import re

from builder_orchestrator.ensure_builder import BuilderOrchestrator
from builder_orchestrator.logging_config import (
    OrgContextFilter,
    get_current_org,
    reset_current_org,
    set_current_org,
    setup_logging,
)
from builder_orchestrator.names import generate_builder_name
from builder_orchestrator.retry import RetryPolicy

from fake_fleet import FakeFleetClient, make_org

NAME_PATTERN = re.compile(r"^fly-builder-[a-z]+-[a-z]+-\d{4}$")


class TestBuilderNames:

    def test_format(self):
        for _ in range(20):
            assert NAME_PATTERN.match(generate_builder_name())

    def test_seeded_generator_is_reproducible(self):
        assert generate_builder_name(random.Random(7)) == generate_builder_name(random.Random(7))

    def test_names_vary(self):
        names = {generate_builder_name() for _ in range(50)}
        assert len(names) > 1


class TestOrgContext:

    def test_filter_stamps_current_org(self):
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)

        token = set_current_org("acme")
        try:
            OrgContextFilter().filter(record)
        finally:
            reset_current_org(token)

        assert record.org_slug == "acme"
        assert get_current_org() is None

    def test_filter_without_org(self):
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)

        OrgContextFilter().filter(record)

        assert record.org_slug == "-"

    def test_ensure_scopes_org_for_its_duration(self):
        seen = []

        class RecordingClient(FakeFleetClient):
            def create_app(self, *args, **kwargs):
                seen.append(get_current_org())
                return super().create_app(*args, **kwargs)

        orchestrator = BuilderOrchestrator(
            RecordingClient(),
            read_policy=RetryPolicy.immediate(3),
            volume_policy=RetryPolicy.immediate(5),
        )
        orchestrator.ensure(make_org(slug="initech"), "iad")

        assert seen == ["initech"]
        assert get_current_org() is None


class TestSetupLogging:

    def test_handler_formats_org(self):
        handler = setup_logging(logging.DEBUG)
        package_logger = logging.getLogger("builder_orchestrator")
        try:
            assert handler in package_logger.handlers
            record = logging.LogRecord("builder_orchestrator.x", logging.INFO, __file__, 1, "hello", None, None)
            token = set_current_org("acme")
            try:
                for f in handler.filters:
                    f.filter(record)
            finally:
                reset_current_org(token)
            assert "[acme]" in handler.format(record)
        finally:
            package_logger.removeHandler(handler)
            package_logger.setLevel(logging.NOTSET)
