"""Platform and upstream adapters: Gemini client, speech, camera."""
