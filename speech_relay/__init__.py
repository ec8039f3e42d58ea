"""Speech relay: live Discord voice transcription relayed through webhooks."""
