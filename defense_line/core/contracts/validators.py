"""
JSON Schema Contract Validators

Модуль для валидации query surface движка согласно формальным JSON Schema
контрактам. Использует библиотеку jsonschema для проверки соответствия данных
схемам. Внешние слои (backend, dashboard) читают только эти структуры.

Схемы (schema/*.json):
- defense_line_status.json
- account_snapshot.json
- price_reading.json
"""

import json
from pathlib import Path
from typing import Any, Dict

import jsonschema
from jsonschema import Draft202012Validator


# =============================================================================
# SCHEMA LOADER
# =============================================================================


class SchemaLoader:
    """
    Загрузчик JSON Schema файлов.

    Схемы поставляются вместе с пакетом (defense_line/core/contracts/schema/).
    """

    def __init__(self, schema_dir: Path | None = None):
        self._schema_dir = schema_dir or Path(__file__).parent / "schema"
        if not self._schema_dir.exists():
            raise RuntimeError(f"Schema directory not found: {self._schema_dir}")

        # Кэш загруженных схем
        self._schemas: Dict[str, Dict[str, Any]] = {}

    def load_schema(self, schema_name: str) -> Dict[str, Any]:
        """
        Загрузка JSON Schema файла.

        Args:
            schema_name: Имя схемы без расширения (например, 'price_reading')

        Returns:
            Загруженная схема как dict

        Raises:
            FileNotFoundError: Если файл схемы не найден
            ValueError: Если схема сама по себе невалидна
        """
        if schema_name in self._schemas:
            return self._schemas[schema_name]

        schema_path = self._schema_dir / f"{schema_name}.json"
        if not schema_path.exists():
            raise FileNotFoundError(f"Schema not found: {schema_path}")

        with open(schema_path, "r", encoding="utf-8") as f:
            schema = json.load(f)

        # Валидируем саму схему (meta-validation)
        try:
            Draft202012Validator.check_schema(schema)
        except jsonschema.SchemaError as e:
            raise ValueError(f"Invalid JSON Schema in {schema_name}.json: {e}")

        self._schemas[schema_name] = schema
        return schema


# Глобальный экземпляр загрузчика
_SCHEMA_LOADER = SchemaLoader()


# =============================================================================
# CONTRACT VALIDATORS
# =============================================================================


class ContractValidator:
    """
    Базовый класс для валидаторов контрактов.

    Инкапсулирует логику валидации данных против JSON Schema.
    """

    def __init__(self, schema_name: str):
        self.schema_name = schema_name
        self.schema = _SCHEMA_LOADER.load_schema(schema_name)
        self.validator = Draft202012Validator(self.schema)

    def validate(self, data: Dict[str, Any]) -> None:
        """
        Валидация данных против схемы.

        Raises:
            ValidationError: Если данные не соответствуют схеме
        """
        self.validator.validate(data)

    def is_valid(self, data: Dict[str, Any]) -> bool:
        """Проверка валидности данных без exception."""
        return self.validator.is_valid(data)

    def iter_errors(self, data: Dict[str, Any]):
        """Итератор по всем ошибкам валидации."""
        return self.validator.iter_errors(data)


class DefenseLineStatusValidator(ContractValidator):
    """Валидатор для defense_line_status контракта."""

    def __init__(self):
        super().__init__("defense_line_status")


class AccountSnapshotValidator(ContractValidator):
    """Валидатор для account_snapshot контракта."""

    def __init__(self):
        super().__init__("account_snapshot")


class PriceReadingValidator(ContractValidator):
    """Валидатор для price_reading контракта."""

    def __init__(self):
        super().__init__("price_reading")


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================


def validate_defense_line_status(data: Dict[str, Any]) -> None:
    """
    Валидация defense_line_status данных.

    Raises:
        ValidationError: Если данные не соответствуют схеме
    """
    DefenseLineStatusValidator().validate(data)


def validate_account_snapshot(data: Dict[str, Any]) -> None:
    """
    Валидация account_snapshot данных.

    Raises:
        ValidationError: Если данные не соответствуют схеме
    """
    AccountSnapshotValidator().validate(data)


def validate_price_reading(data: Dict[str, Any]) -> None:
    """
    Валидация price_reading данных.

    Raises:
        ValidationError: Если данные не соответствуют схеме
    """
    PriceReadingValidator().validate(data)
