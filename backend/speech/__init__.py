"""
Speech-to-text adapters for the live interview.
"""

from .base import StreamingTranscriber, TranscriberFactory, TranscriberState, TranscriptionCallbacks

__all__ = ['StreamingTranscriber', 'TranscriberFactory', 'TranscriberState', 'TranscriptionCallbacks']
