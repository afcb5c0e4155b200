"""
Players — sinks that render the radio's audio.

A player does NOT pick content.  It is handed one stream at a time by the
orchestrator, renders it, and reports start/finish/error back.  Only the
orchestrator calls play/pause/resume/destroy on it.

Current players:
  mpv.py  — local playback through mpv (PipeWire/PulseAudio output)
"""
