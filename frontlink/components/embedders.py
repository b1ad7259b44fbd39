"""
Embedding components for the frontlink pipeline.

This module contains the clients that turn text chunks into numerical vector
embeddings. Every embedder exposes a `model_tag` identifying the provider and
model, since embeddings from different models are stored side by side and
must never be mixed when comparing documents.
"""

from abc import ABC, abstractmethod
import logging
import os
from typing import List, Optional

import numpy as np
import openai
from openai import OpenAI
from dotenv import load_dotenv

from ..utils.errors import PermanentServiceError, classify_openai_error

load_dotenv()

logger = logging.getLogger(__name__)


class BaseEmbedder(ABC):
    """Abstract base class for all embedder components."""

    @property
    @abstractmethod
    def model_tag(self) -> str:
        """Provider/model identifier stored with every embedding."""
        pass

    @staticmethod
    @abstractmethod
    def tag_for(**config) -> str:
        """
        The model tag an instance built from `config` would report.

        Every embedder must override this as a static method; `calc` and
        `write` call it on the class without building the embedder.
        """
        pass

    @abstractmethod
    def embed(self, chunks: List[str]) -> np.ndarray:
        """
        Embeds a list of text chunks into a NumPy array of vectors.

        Args:
            chunks (List[str]): A list of text strings to be embedded.

        Returns:
            np.ndarray: A 2D NumPy array where each row is the vector embedding
                        for the corresponding text chunk.

        Raises:
            TransientServiceError: On timeouts, connection problems or rate limiting.
            PermanentServiceError: When the request can never succeed as sent.
        """
        pass


class OpenAIEmbedder(BaseEmbedder):
    """
    An embedder that uses the OpenAI embeddings API.

    The SDK's own retries are disabled; retrying is the embedding stage's job.
    """

    def __init__(
        self,
        model_name: str = "text-embedding-3-small",
        api_key: Optional[str] = None,
        dimensions: Optional[int] = None,
        timeout: float = 60.0,
        base_url: Optional[str] = None,
    ):
        """
        Initializes the OpenAIEmbedder.

        Args:
            model_name (str): The name of the OpenAI model to use for embedding.
            api_key (str): The API key. Defaults to the OPENAI_API_KEY environment variable.
            dimensions (int): Optional shortened output size, for models that support it.
            timeout (float): Request timeout in seconds.
            base_url (str): Optional OpenAI-compatible endpoint.
        """
        self.model_name = model_name
        self.dimensions = dimensions
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not self.api_key:
            raise ValueError(
                "You need an OpenAI API key. Pass it as the 'api_key' argument or set the 'OPENAI_API_KEY' environment variable."
            )
        self.client = OpenAI(
            api_key=self.api_key, base_url=base_url, timeout=timeout, max_retries=0
        )
        logger.info(f"Initialized OpenAIEmbedder with model '{self.model_name}'.")

    @staticmethod
    def tag_for(model_name: str = "text-embedding-3-small", dimensions: Optional[int] = None, **_) -> str:
        tag = f"openai/{model_name}"
        if dimensions:
            tag += f"@{dimensions}"
        return tag

    @property
    def model_tag(self) -> str:
        return self.tag_for(self.model_name, self.dimensions)

    def embed(self, chunks: List[str]) -> np.ndarray:
        """Embeds a list of text chunks using the OpenAI API."""
        if not chunks:
            logger.warning("Got an empty list of chunks. Returning empty array.")
            return np.array([])

        logger.debug(f"Embedding {len(chunks)} chunks using '{self.model_name}'...")
        params = {"input": chunks, "model": self.model_name}
        if self.dimensions:
            params["dimensions"] = self.dimensions

        try:
            response = self.client.embeddings.create(**params)
        except openai.OpenAIError as e:
            raise classify_openai_error(e, provider="openai") from e

        data = sorted(response.data, key=lambda item: item.index)
        if len(data) != len(chunks):
            raise PermanentServiceError(
                f"Expected {len(chunks)} embeddings, got {len(data)}", provider="openai"
            )
        return np.array([item.embedding for item in data], dtype=float)


class SentenceTransformerEmbedder(BaseEmbedder):
    """
    An embedder that runs a sentence-transformers model locally.

    Needs the optional `local` extra (sentence-transformers). The model is
    loaded on construction.
    """

    def __init__(self, model_name: str = "sentence-transformers/all-MiniLM-L6-v2"):
        """
        Args:
            model_name (str): The name of the sentence-transformer model to load
                              from the Hugging Face Hub.
        """
        self.model_name = model_name
        self.model = self._load_model()

    @staticmethod
    def tag_for(model_name: str = "sentence-transformers/all-MiniLM-L6-v2", **_) -> str:
        return f"sentence-transformers/{model_name}"

    @property
    def model_tag(self) -> str:
        return self.tag_for(self.model_name)

    def _load_model(self):
        """Loads the SentenceTransformer model and handles potential errors."""
        from sentence_transformers import SentenceTransformer

        logger.debug(f"Loading SentenceTransformer model: '{self.model_name}'")
        try:
            model = SentenceTransformer(self.model_name)
            logger.info(f"SentenceTransformer model '{self.model_name}' loaded successfully.")
            return model
        except Exception:
            logger.error(
                f"Failed to load SentenceTransformer model '{self.model_name}'. "
                f"Please ensure the model name is correct and you have an internet connection.",
                exc_info=True,
            )
            raise

    def embed(self, chunks: List[str]) -> np.ndarray:
        """Converts text chunks into embeddings using the pre-loaded model."""
        if not chunks:
            logger.warning("Embedder received an empty list of chunks. Returning empty array.")
            return np.array([])

        embeddings = self.model.encode(chunks, show_progress_bar=False)
        logger.debug(f"Output embedding shape: {embeddings.shape}")
        return np.asarray(embeddings, dtype=float)
