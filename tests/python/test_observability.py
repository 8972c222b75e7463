# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Tests for Meridian Observability Module

Validates:
- Verbosity enum
- LogEntry serialization
- MeridianLogger singleton and handlers
- Lifecycle events emitted by the executor
"""

import io
import json

import numpy as np

from meridian import GraphExecutor, ReferenceContext
from meridian.observability import (
    LogEntry,
    MeridianLogger,
    Verbosity,
    get_logger,
    set_verbosity,
)


class TestVerbosity:
    def test_verbosity_values(self):
        assert Verbosity.SILENT == 0
        assert Verbosity.ERROR == 1
        assert Verbosity.WARNING == 2
        assert Verbosity.INFO == 3
        assert Verbosity.DEBUG == 4


class TestLogEntry:
    """Tests for LogEntry dataclass."""

    def test_to_json(self):
        entry = LogEntry(
            level="INFO",
            message="Test message",
            timestamp="2025-01-01T00:00:00",
            component="executor",
            duration_ms=1.5,
        )
        data = json.loads(entry.to_json())
        assert data["message"] == "Test message"
        assert data["duration_ms"] == 1.5
        assert "graph_name" not in data
        assert "extra" not in data

    def test_to_text(self):
        entry = LogEntry(
            level="WARNING",
            message="Skipped",
            timestamp="2025-01-01T00:00:00",
            component="accelerator",
            duration_ms=2.0,
        )
        assert entry.to_text() == "[WARNING] [accelerator] Skipped (2.00ms)"


class TestMeridianLogger:
    """Tests for the structured logger."""

    def test_singleton(self):
        assert MeridianLogger.get() is get_logger()

    def test_verbosity_filters(self):
        """Test messages above the verbosity level are dropped."""
        stream = io.StringIO()
        logger = get_logger()
        logger.set_output(stream)
        set_verbosity(Verbosity.WARNING)
        logger.info("hidden")
        logger.warning("shown")
        assert "hidden" not in stream.getvalue()
        assert "shown" in stream.getvalue()

    def test_verbosity_clamped(self):
        set_verbosity(9)
        assert get_logger().get_verbosity() == Verbosity.DEBUG

    def test_json_output(self):
        stream = io.StringIO()
        logger = get_logger()
        logger.set_output(stream)
        logger.set_json_format(True)
        logger.error("failed", component="executor", graph_name="g", node="conv")
        data = json.loads(stream.getvalue())
        assert data["level"] == "ERROR"
        assert data["graph_name"] == "g"
        assert data["extra"] == {"node": "conv"}

    def test_env_verbosity(self, monkeypatch):
        monkeypatch.setenv("MERIDIAN_VERBOSITY", "4")
        MeridianLogger.reset()
        assert MeridianLogger.get().get_verbosity() == Verbosity.DEBUG


class TestLifecycleEvents:
    """Tests for events logged by the executor and the accelerator."""

    def test_accelerated_compile_logged(self, conv_graph, conv_input):
        entries = []
        logger = get_logger()
        logger.set_output(io.StringIO())
        logger.add_handler(entries.append)
        set_verbosity(Verbosity.INFO)

        graph, weights = conv_graph()
        GraphExecutor(graph, weights, accelerator=ReferenceContext()).execute({"x": conv_input})

        compiled = [e for e in entries if e.operation == "compile"]
        assert len(compiled) == 1
        assert compiled[0].component == "accelerator"
        assert compiled[0].duration_ms >= 0
        assert compiled[0].extra["fused"] == 1

    def test_dispose_logged(self, add_graph):
        entries = []
        logger = get_logger()
        logger.set_output(io.StringIO())
        logger.add_handler(entries.append)
        set_verbosity(Verbosity.INFO)

        graph, weights = add_graph
        GraphExecutor(graph, weights).dispose()

        assert [e.operation for e in entries] == ["dispose"]
        assert entries[0].graph_name == "add5"
        np.testing.assert_equal(weights["five"][0].is_disposed, True)
