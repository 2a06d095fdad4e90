# -*- coding: utf-8 -*-
"""
preferencias.py
Armazenamento chave/valor em arquivo JSON para a configuração de geração.
"""

from __future__ import annotations
from typing import Any, Dict, Optional
import json
import logging
import os

from apostas_engine import Config

logger = logging.getLogger(__name__)

CHAVE_CONFIG = "lotofacil_config"


class ArmazemPreferencias:
    def __init__(self, caminho: str = "preferencias.json") -> None:
        self.caminho = caminho

    def _ler_tudo(self) -> Dict[str, Any]:
        if not os.path.exists(self.caminho):
            return {}
        try:
            with open(self.caminho, "r", encoding="utf-8") as f:
                dados = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Preferências corrompidas em {self.caminho}. Usando padrões... Erro: {e}")
            return {}
        return dados if isinstance(dados, dict) else {}

    def ler(self, chave: str, padrao: Any = None) -> Any:
        return self._ler_tudo().get(chave, padrao)

    def gravar(self, chave: str, valor: Any) -> None:
        dados = self._ler_tudo()
        dados[chave] = valor
        tmp = f"{self.caminho}.tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(dados, f, ensure_ascii=False, indent=2)
        os.replace(tmp, self.caminho)


def _chave(escopo: Optional[str]) -> str:
    return f"{CHAVE_CONFIG}:{escopo}" if escopo else CHAVE_CONFIG

def carregar_config(armazem: ArmazemPreferencias, escopo: Optional[str] = None) -> Config:
    """Config salva mesclada sobre os padrões; dados inválidos voltam ao padrão."""
    salvo = armazem.ler(_chave(escopo))
    if not isinstance(salvo, dict):
        return Config()
    try:
        return Config.de_dict(salvo)
    except (TypeError, ValueError) as e:
        logger.warning(f"Configuração salva inválida ({escopo or 'global'}): {e}")
        return Config()

def salvar_config(armazem: ArmazemPreferencias, cfg: Config, escopo: Optional[str] = None) -> None:
    armazem.gravar(_chave(escopo), cfg.para_dict())
    logger.debug(f"Configuração salva ({escopo or 'global'})")
