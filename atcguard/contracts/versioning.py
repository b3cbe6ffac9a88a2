#!/usr/bin/env python3
"""Shared schema/model version constants for engine contracts."""

from __future__ import annotations

SCHEMA_VERSION = "1.0.0"
SUPPORTED_REQUEST_SCHEMA_VERSIONS = {"1.0.0"}
ENGINE_MODEL_VERSION = "cdr_v1_sampled_cpa"
