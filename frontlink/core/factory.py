"""
Component Factory for the frontlink pipeline.

This module implements the factory pattern for creating pipeline components.
It uses registries to map configuration strings (e.g., 'openai') to the
actual component classes, so chunkers, embedders and summarizers can be
swapped through the configuration file.
"""

import logging
from ..components.chunkers import RecursiveCharacterChunker, ParagraphChunker
from ..components.embedders import OpenAIEmbedder, SentenceTransformerEmbedder
from ..components.summarizers import OpenAISummarizer, ClaudeSummarizer

logger = logging.getLogger(__name__)

# A registry mapping 'type' strings to their corresponding Chunker classes.
CHUNKER_REGISTRY = {
    "recursive_character": RecursiveCharacterChunker,
    "paragraph": ParagraphChunker,
}

# A registry mapping 'type' strings to their corresponding Embedder classes.
EMBEDDER_REGISTRY = {
    "openai": OpenAIEmbedder,
    "sentence_transformer": SentenceTransformerEmbedder,
}

# A registry mapping 'type' strings to their corresponding Summarizer classes.
SUMMARIZER_REGISTRY = {
    "openai": OpenAISummarizer,
    "claude": ClaudeSummarizer,
}


def _lookup(component_config: dict, registry: dict):
    component_type = component_config.get("type", "")
    if not component_type:
        raise ValueError("Component 'type' not specified in configuration.")

    component_class = registry.get(component_type)
    if not component_class:
        raise ValueError(
            f"'{component_type}' is not a valid component type. "
            f"Choose one of: {', '.join(sorted(registry))}"
        )
    return component_class


def build_component(component_config: dict, registry: dict):
    """
    Builds a component instance from a configuration dictionary and a registry.

    The class is looked up by the config's 'type' and instantiated with the
    keyword arguments found under 'config'.

    Args:
        component_config (dict): The component's configuration dictionary,
            expected to have 'type' and 'config' keys.
        registry (dict): The registry (e.g., EMBEDDER_REGISTRY) to look up the
            component class.

    Returns:
        An instance of the component class.

    Raises:
        ValueError: If the 'type' is not specified in the config or if the
            type is not found in the registry.
    """
    component_class = _lookup(component_config, registry)
    config = component_config.get("config", {})

    logger.debug(
        f"Building component '{component_class.__name__}' with config: {config}"
    )
    return component_class(**config)


def embedding_model_tag(component_config: dict) -> str:
    """
    The model tag an embedder built from `component_config` would use.

    Lets stages that only read stored embeddings work without API keys.
    """
    component_class = _lookup(component_config, EMBEDDER_REGISTRY)
    return component_class.tag_for(**component_config.get("config", {}))
