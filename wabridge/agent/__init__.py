"""Bridge loop and response post-processing."""

from wabridge.agent.loop import BridgeLoop
from wabridge.agent.postprocess import MediaReference, extract_media, process_response, split_message

__all__ = ["BridgeLoop", "MediaReference", "extract_media", "process_response", "split_message"]
