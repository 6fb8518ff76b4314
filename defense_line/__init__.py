"""
Defense Line — market-stability protocol engine.

Депозиторы вносят stable в общий пул; когда оракул сообщает, что цена
volatile-актива опустилась до defense line, пул одним неделимым шагом
конвертируется по цене defense line и распределяется pro rata.

Contains:
- defense_line/core/         : errors, config, fixed-point math, domain, contracts
- defense_line/ledger/       : бухгалтерия депозиторов
- defense_line/oracle/       : контракт ценового фида
- defense_line/engine/       : state machine и конверсия
- defense_line/entrypoints/  : command surface (validation layer)
"""

__version__ = "0.1.0"
