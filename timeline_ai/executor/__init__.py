"""Execution layer: workflow runs, step library, batch jobs.

Media work (probing, scene detection, transcription, rendering) happens in
the native media backend, reached through the NativeBridge.
"""
