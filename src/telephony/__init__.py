"""Telephony edge of the bridge.

Twilio Media Streams framing, the G.711 codec and the paced outbound
audio path live here.
"""
