"""Conversational AI gateway with multi-provider streaming."""
