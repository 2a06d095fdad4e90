# -*- coding: utf-8 -*-
"""
apostas_engine.py
Núcleo de geração e avaliação de apostas Lotofácil com:
- Score por dezena (quentes por frequência, frios por z-score de atraso, conectividade de clusters)
- Amostragem ponderada por score (pesos acumulados + busca binária) com dezenas fixas/excluídas
- Filtros rígidos (soma, pares, moldura, primos, Fibonacci, repetidos do último, finais, consecutivos)
- Ordenação por score, sem combinações duplicadas, com teto fixo de tentativas
API: gerar_apostas(...), backtest(...) e conferir_apostas(...).
"""

from __future__ import annotations
from dataclasses import dataclass, asdict, fields
from typing import List, Dict, Tuple, Set, Iterable, Optional
from collections import Counter
import logging
import math
import random
import re
import threading
from bisect import bisect_right
from itertools import accumulate

from analise_engine import Analise, Aviso, Sorteio, MOLDURA, NUMS, TAMANHO_SORTEIO

logger = logging.getLogger(__name__)

PRIMOS = frozenset({2, 3, 5, 7, 11, 13, 17, 19, 23})
FIBONACCI = frozenset({1, 2, 3, 5, 8, 13, 21})

MAX_TENTATIVAS = 50000
FATOR_CANDIDATOS = 5
TOP_CLUSTERS_SCORE = 15
LIMIAR_Z_FRIO = 1.0
MIN_ACERTOS_PREMIO = 11
JANELA_BACKTEST = 100

Faixa = Tuple[int, int]

# -----------------------------
# Configuração
# -----------------------------
@dataclass(frozen=True)
class Config:
    quantidade: int = 10

    # Estratégias de pontuação
    usar_quentes: bool = True
    usar_frios: bool = True
    usar_clusters: bool = True

    # Filtros de geração
    max_repetidos_anterior: int = 8
    faixa_pares: Faixa = (6, 9)
    faixa_soma: Faixa = (180, 210)
    faixa_moldura: Faixa = (8, 11)
    faixa_primos: Faixa = (3, 7)
    faixa_fibonacci: Faixa = (2, 5)
    max_mesmo_final: int = 4
    max_consecutivos: int = 3

    # Texto livre, separado por vírgulas
    incluir: str = ""
    excluir: str = ""

    # Pesos (%)
    peso_frequencia: int = 40
    peso_conectividade: int = 20
    peso_zscore: int = 15

    def __post_init__(self) -> None:
        for f in fields(self):
            if f.name.startswith("faixa_"):
                lo, hi = (int(v) for v in getattr(self, f.name))
                if lo > hi:
                    raise ValueError(f"{f.name}: mínimo {lo} maior que máximo {hi}")
                object.__setattr__(self, f.name, (lo, hi))
        if not 1 <= self.quantidade <= 20:
            raise ValueError(f"quantidade deve estar entre 1 e 20 (recebido {self.quantidade})")
        for nome in ("peso_frequencia", "peso_conectividade", "peso_zscore"):
            if not 0 <= getattr(self, nome) <= 100:
                raise ValueError(f"{nome} deve estar entre 0 e 100")
        for nome in ("max_repetidos_anterior", "max_mesmo_final", "max_consecutivos"):
            if getattr(self, nome) < 0:
                raise ValueError(f"{nome} não pode ser negativo")

    def para_dict(self) -> Dict:
        dados = asdict(self)
        for chave, valor in dados.items():
            if isinstance(valor, tuple):
                dados[chave] = list(valor)
        return dados

    @classmethod
    def de_dict(cls, dados: Dict) -> "Config":
        """Mescla valores salvos sobre os padrões; chaves desconhecidas são ignoradas."""
        conhecidos = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in dados.items() if k in conhecidos})

@dataclass(frozen=True)
class Aposta:
    numeros: Tuple[int, ...]
    soma: int
    pares: int
    impares: int
    moldura: int
    miolo: int
    score: float

    def para_dict(self) -> Dict:
        dados = asdict(self)
        dados["numeros"] = list(self.numeros)
        return dados

@dataclass(frozen=True)
class LinhaBacktest:
    concurso: int
    numeros: Sorteio
    acertos: int

@dataclass(frozen=True)
class ResultadoBacktest:
    aposta: Tuple[int, ...]
    linhas: Tuple[LinhaBacktest, ...]
    premios: Dict[int, int]

# -----------------------------
# Utilidades
# -----------------------------
def to_set(aposta: Iterable[int]) -> Set[int]:
    return set(int(x) for x in aposta)

def parse_numeros(texto: str) -> List[int]:
    """Extrai dezenas de um texto livre ("5, 10, 15"), sem repetição."""
    vistos: List[int] = []
    for bruto in re.findall(r"\d+", texto or ""):
        n = int(bruto)
        if not 1 <= n <= 25:
            logger.warning(f"Dezena {n} fora do intervalo 1-25 ignorada")
            continue
        if n not in vistos:
            vistos.append(n)
    return vistos

def conta_sequencias(nums: Iterable[int]) -> int:
    s = sorted(nums)
    maior = atual = 1 if s else 0
    for i in range(1, len(s)):
        if s[i] == s[i-1] + 1:
            atual += 1
            maior = max(maior, atual)
        else:
            atual = 1
    return maior

def maior_repeticao_final(nums: Iterable[int]) -> int:
    finais = Counter(n % 10 for n in nums)
    return max(finais.values(), default=0)

def _arredonda(valor: float) -> int:
    # meio para cima, sem o arredondamento bancário do round()
    return int(math.floor(valor + 0.5))

def _dentro(valor: int, faixa: Faixa) -> bool:
    return faixa[0] <= valor <= faixa[1]

def _aviso_padrao(mensagem: str) -> None:
    logger.warning(mensagem)

# -----------------------------
# Score por dezena
# -----------------------------
def pontuar_numeros(analise: Analise, cfg: Config) -> Dict[int, float]:
    score = {n: 0.0 for n in NUMS}

    if cfg.usar_quentes:
        for i, st in enumerate(analise.frequencias):
            score[st.numero] += (25 - i) * (cfg.peso_frequencia / 100)

    if cfg.usar_frios:
        # peso do z-score entra sem a divisão por 100 aplicada aos outros sinais
        for st in analise.atrasos:
            if st.z_score > LIMIAR_Z_FRIO:
                score[st.numero] += st.z_score * cfg.peso_zscore

    if cfg.usar_clusters:
        for cl in analise.clusters[:TOP_CLUSTERS_SCORE]:
            peso = cl.score * (cfg.peso_conectividade / 100)
            for n in cl.numeros:
                score[n] += peso

    return score

# -----------------------------
# Características e filtros
# -----------------------------
def caracteristicas(combo: List[int], ultimo: Iterable[int]) -> Dict[str, int]:
    ult = to_set(ultimo)
    pares = sum(1 for n in combo if n % 2 == 0)
    return {
        "soma": sum(combo),
        "pares": pares,
        "moldura": sum(1 for n in combo if n in MOLDURA),
        "repetidos": sum(1 for n in combo if n in ult),
        "primos": sum(1 for n in combo if n in PRIMOS),
        "fibonacci": sum(1 for n in combo if n in FIBONACCI),
        "mesmo_final": maior_repeticao_final(combo),
        "consecutivos": conta_sequencias(combo),
    }

def passa_filtros(feats: Dict[str, int], cfg: Config) -> bool:
    return (
        _dentro(feats["soma"], cfg.faixa_soma)
        and _dentro(feats["pares"], cfg.faixa_pares)
        and _dentro(feats["moldura"], cfg.faixa_moldura)
        and feats["repetidos"] <= cfg.max_repetidos_anterior
        and _dentro(feats["primos"], cfg.faixa_primos)
        and _dentro(feats["fibonacci"], cfg.faixa_fibonacci)
        and feats["mesmo_final"] <= cfg.max_mesmo_final
        and feats["consecutivos"] <= cfg.max_consecutivos
    )

# -----------------------------
# Amostragem ponderada
# -----------------------------
def _sortear_combinacao(
    incluidos: List[int],
    elegiveis: List[int],
    pesos: List[int],
    rng: random.Random,
) -> Optional[List[int]]:
    escolhidos = set(incluidos)
    disponiveis = list(elegiveis)
    restantes = list(pesos)

    # sortear uma dezena já escolhida não altera o conjunto, então basta
    # sortear entre as restantes na proporção dos pesos
    while len(escolhidos) < TAMANHO_SORTEIO and disponiveis:
        acumulado = list(accumulate(restantes))
        idx = bisect_right(acumulado, rng.random() * acumulado[-1])
        escolhidos.add(disponiveis.pop(idx))
        restantes.pop(idx)

    if len(escolhidos) < TAMANHO_SORTEIO:
        return None
    return sorted(escolhidos)

def gerar_apostas(
    analise: Analise,
    cfg: Optional[Config] = None,
    rng: Optional[random.Random] = None,
    seed: Optional[int] = None,
    cancelar: Optional[threading.Event] = None,
    avisar: Optional[Aviso] = None,
) -> List[Aposta]:
    """
    Gera até cfg.quantidade apostas válidas, distintas e ordenadas por score.

    Conflitos entre dezenas fixas e excluídas (ou mais de 15 fixas) resultam
    em lista vazia e aviso. Filtros impossíveis apenas esgotam as tentativas.
    Com `seed` (ou um `rng` próprio) o resultado é reprodutível.
    """
    cfg = cfg or Config()
    rng = rng or random.Random(seed)
    avisar = avisar or _aviso_padrao

    incluidos = parse_numeros(cfg.incluir)
    excluidos = set(parse_numeros(cfg.excluir))
    if any(n in excluidos for n in incluidos):
        avisar("Conflito: Um número não pode ser fixado e excluído ao mesmo tempo.")
        return []
    if len(incluidos) > TAMANHO_SORTEIO:
        avisar("Não é possível fixar mais de 15 números.")
        return []

    score = pontuar_numeros(analise, cfg)
    elegiveis = [
        n for n in sorted(NUMS, key=lambda n: score[n], reverse=True)
        if n not in incluidos and n not in excluidos
    ]
    pesos = [max(1, _arredonda(score[n])) for n in elegiveis]
    ultimo = analise.ultimo_sorteio

    alvo = cfg.quantidade * FATOR_CANDIDATOS
    aceitas: List[Aposta] = []
    vistas: Set[Tuple[int, ...]] = set()
    tentativas = 0

    if len(incluidos) + len(elegiveis) < TAMANHO_SORTEIO:
        logger.info("Dezenas disponíveis insuficientes para completar 15; nenhuma aposta possível")
        tentativas = MAX_TENTATIVAS

    while len(aceitas) < alvo and tentativas < MAX_TENTATIVAS:
        if cancelar is not None and cancelar.is_set():
            logger.info(f"Geração cancelada após {tentativas} tentativas ({len(aceitas)} aceitas)")
            break
        tentativas += 1

        combo = _sortear_combinacao(incluidos, elegiveis, pesos, rng)
        if combo is None:
            continue

        feats = caracteristicas(combo, ultimo)
        if not passa_filtros(feats, cfg):
            continue

        chave = tuple(combo)
        if chave in vistas:
            continue
        vistas.add(chave)
        aceitas.append(Aposta(
            numeros=chave,
            soma=feats["soma"],
            pares=feats["pares"],
            impares=TAMANHO_SORTEIO - feats["pares"],
            moldura=feats["moldura"],
            miolo=TAMANHO_SORTEIO - feats["moldura"],
            score=round(sum(score[n] for n in combo), 1),
        ))

    if tentativas >= MAX_TENTATIVAS and len(aceitas) < cfg.quantidade:
        logger.info(f"Teto de {MAX_TENTATIVAS} tentativas atingido com {len(aceitas)} apostas válidas")

    aceitas.sort(key=lambda a: a.score, reverse=True)
    logger.debug(f"Apostas aceitas: {len(aceitas)} em {tentativas} tentativas")
    return aceitas[:cfg.quantidade]

# -----------------------------
# Avaliação
# -----------------------------
def backtest(
    aposta: Iterable[int],
    historico: List[Sorteio],
    janela: int = JANELA_BACKTEST,
    minimo: int = MIN_ACERTOS_PREMIO,
) -> ResultadoBacktest:
    """Acertos da aposta em cada um dos `janela` concursos mais recentes."""
    ap = to_set(aposta)
    total = len(historico)
    linhas = tuple(
        LinhaBacktest(total - idx, tuple(s), len(ap & set(s)))
        for idx, s in enumerate(historico[:janela])
    )
    premios = Counter(l.acertos for l in linhas if l.acertos >= minimo)
    return ResultadoBacktest(tuple(sorted(ap)), linhas, dict(sorted(premios.items(), reverse=True)))

def conferir_apostas(apostas: List[Iterable[int]], resultado: Iterable[int]) -> List[Dict]:
    res = to_set(resultado)
    out = []
    for idx, ap in enumerate(apostas, start=1):
        s = to_set(ap)
        acertos = len(s & res)
        out.append({"indice": idx, "aposta": sorted(list(s)), "acertos": acertos, "premiada": (acertos >= MIN_ACERTOS_PREMIO)})
    return out
