"""
Pipeline Module
===============

Per-frame processing: conversion, transmission and failure escalation.

    - FailureGate: Consecutive failure counter with a trip threshold
    - FrameHandler: Encode -> send -> ack/stop for one frame
    - FrameWorker: Buffer consumer driving the handler
"""

from ft_screencast.pipeline.gate import DEFAULT_FAILURE_THRESHOLD, FailureGate
from ft_screencast.pipeline.handler import (
    ControlAction,
    FrameControl,
    FrameHandler,
    FrameHandlerMetrics,
)
from ft_screencast.pipeline.worker import FrameWorker


__all__ = [
    "ControlAction",
    "DEFAULT_FAILURE_THRESHOLD",
    "FailureGate",
    "FrameControl",
    "FrameHandler",
    "FrameHandlerMetrics",
    "FrameWorker",
]
