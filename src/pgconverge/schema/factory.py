"""
Dialect factory for creating codecs and synthesizers based on configuration.
"""

import logging
from typing import Dict, Tuple, Type

from .codec import PostgresTypeCodec, TypeCodec
from .synthesizer import IndexSynthesizer, PostgresIndexSynthesizer
from ..config import PgConvergeConfig
from ..exceptions import ValidationError
from ..identifiers import IdentifierBuilder


logger = logging.getLogger(__name__)


class DialectFactory:
    """
    Factory for the engine-specific halves of reconciliation.

    Each dialect contributes one TypeCodec and one IndexSynthesizer; the
    reconciler only ever talks to those two interfaces.
    """

    _DIALECT_REGISTRY: Dict[str, Tuple[Type[TypeCodec], Type[IndexSynthesizer]]] = {
        "postgresql": (PostgresTypeCodec, PostgresIndexSynthesizer),
    }

    @classmethod
    def _lookup(cls, dialect: str) -> Tuple[Type[TypeCodec], Type[IndexSynthesizer]]:
        dialect = dialect.lower()
        if dialect not in cls._DIALECT_REGISTRY:
            available = list(cls._DIALECT_REGISTRY.keys())
            raise ValidationError(
                f"Unsupported dialect: {dialect}. Available dialects: {available}"
            )
        return cls._DIALECT_REGISTRY[dialect]

    @classmethod
    def create_identifiers(cls, config: PgConvergeConfig) -> IdentifierBuilder:
        return IdentifierBuilder(config.schema_management.identifier_max_length)

    @classmethod
    def create_codec(cls, config: PgConvergeConfig) -> TypeCodec:
        codec_class, _ = cls._lookup(config.schema_management.dialect)
        logger.debug(f"Creating {codec_class.__name__}")
        return codec_class(cls.create_identifiers(config))

    @classmethod
    def create_synthesizer(cls, config: PgConvergeConfig) -> IndexSynthesizer:
        _, synthesizer_class = cls._lookup(config.schema_management.dialect)
        logger.debug(
            f"Creating {synthesizer_class.__name__} "
            f"(language={config.search.language}, method={config.search.index_method})"
        )
        return synthesizer_class(
            cls.create_identifiers(config),
            language=config.search.language,
            fulltext_method=config.search.index_method,
        )

    @classmethod
    def get_supported_dialects(cls) -> list:
        return list(cls._DIALECT_REGISTRY.keys())

    @classmethod
    def register_dialect(
        cls,
        name: str,
        codec_class: Type[TypeCodec],
        synthesizer_class: Type[IndexSynthesizer],
    ) -> None:
        """Register a sibling dialect behind the same interfaces."""
        if not issubclass(codec_class, TypeCodec):
            raise ValidationError(f"Codec class {codec_class} must inherit from TypeCodec")
        if not issubclass(synthesizer_class, IndexSynthesizer):
            raise ValidationError(
                f"Synthesizer class {synthesizer_class} must inherit from IndexSynthesizer"
            )
        cls._DIALECT_REGISTRY[name.lower()] = (codec_class, synthesizer_class)
        logger.info(f"Registered dialect: {name}")
