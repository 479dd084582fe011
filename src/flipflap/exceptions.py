"""flipflap ライブラリの例外型定義"""

from __future__ import annotations


class FlipflapError(Exception):
    """flipflap ライブラリのエラー基底クラス。"""

    def __init__(
        self,
        code: str,
        message: str,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        return f"{self.code}: {super().__str__()}"


class FlagStoreError(FlipflapError):
    """フラグストアへのアクセスに失敗した場合のエラー。"""


class FlagStoreErrorCodes:
    """FlagStoreError のエラーコード定数。"""

    STORE_UNAVAILABLE: str = "STORE_UNAVAILABLE"
    WRITE_FAILED: str = "WRITE_FAILED"


class FlagDocumentError(FlipflapError):
    """フラグドキュメントの構造が不正な場合のエラー。"""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(FlagDocumentErrorCodes.INVALID_DOCUMENT, message, cause)


class FlagDocumentErrorCodes:
    """FlagDocumentError のエラーコード定数。"""

    INVALID_DOCUMENT: str = "INVALID_DOCUMENT"


class ConfigError(FlipflapError):
    """設定読み込みのエラー。"""


class ConfigErrorCodes:
    """ConfigError のエラーコード定数。"""

    READ_FILE: str = "READ_FILE_ERROR"
    PARSE_YAML: str = "PARSE_YAML_ERROR"
    VALIDATION: str = "VALIDATION_ERROR"
