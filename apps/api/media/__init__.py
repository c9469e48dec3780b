"""Media download, audio extraction, speech-to-text and language-model clients."""
