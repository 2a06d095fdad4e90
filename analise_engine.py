# -*- coding: utf-8 -*-
"""
analise_engine.py
Análise estatística do histórico da Lotofácil:
- Leitura tolerante dos concursos (texto TSV/CSV, mais recente primeiro)
- Frequência, atraso (média, desvio, z-score), pares mais fortes
- Clusters de dezenas consecutivas, qui-quadrado de uniformidade, entropia
- Histórico moldura/miolo dos últimos 50 concursos
API: parse_sorteios(...), anexar_sorteios(...) e analisar(...).
"""

from __future__ import annotations
from dataclasses import dataclass, asdict
from datetime import date
from typing import List, Dict, Tuple, Optional, Callable, Iterable
from collections import Counter
from concurrent.futures import Executor
import itertools
import logging
import re

import numpy as np

logger = logging.getLogger(__name__)

NUMS = list(range(1, 26))  # 1..25
TAMANHO_SORTEIO = 15
MIN_SORTEIOS = 20
JANELA_MOLDURA = 50
TOP_PARES = 20

MOLDURA = frozenset({1, 2, 3, 4, 5, 6, 10, 11, 15, 16, 20, 21, 22, 23, 24, 25})
MIOLO = frozenset(NUMS) - MOLDURA

# Nível de significância 0.05
VALORES_CRITICOS_QUI_QUADRADO: Dict[int, float] = {24: 36.415}

Sorteio = Tuple[int, ...]
Aviso = Callable[[str], None]

_SEPARADOR = re.compile(r"[\t,]")


def _aviso_padrao(mensagem: str) -> None:
    logger.warning(mensagem)

# -----------------------------
# Estruturas
# -----------------------------
@dataclass(frozen=True)
class NumeroStat:
    numero: int
    frequencia: int
    percentual: float

@dataclass(frozen=True)
class AtrasoStat:
    numero: int
    atraso_atual: int
    atraso_medio: float
    desvio_padrao: float
    z_score: float

@dataclass(frozen=True)
class ParStat:
    par: Tuple[int, int]
    ocorrencias: int

    @property
    def chave(self) -> str:
        return f"{self.par[0]}-{self.par[1]}"

@dataclass(frozen=True)
class Cluster:
    numeros: Tuple[int, ...]
    tamanho: int
    ocorrencias: int
    ultimo_sorteio: int
    score: int

    @property
    def chave(self) -> str:
        return "-".join(str(n) for n in self.numeros)

@dataclass(frozen=True)
class QuiQuadrado:
    chi_value: float
    graus_liberdade: int
    p_value: str
    uniforme: bool

@dataclass(frozen=True)
class Entropia:
    entropia: float
    normalizada: float

@dataclass(frozen=True)
class MolduraMiolo:
    sorteio: int
    moldura: int
    miolo: int

@dataclass(frozen=True)
class Analise:
    """Retrato somente-leitura do histórico, consumido pelo gerador de apostas."""
    frequencias: Tuple[NumeroStat, ...]
    atrasos: Tuple[AtrasoStat, ...]
    pares: Tuple[ParStat, ...]
    clusters: Tuple[Cluster, ...]
    qui_quadrado: QuiQuadrado
    entropia: Entropia
    moldura_miolo: Tuple[MolduraMiolo, ...]
    total_sorteios: int
    ultimo_sorteio: Sorteio

    def para_dict(self) -> Dict:
        dados = asdict(self)
        dados["pares"] = [{"par": p.chave, "ocorrencias": p.ocorrencias} for p in self.pares]
        for bruto, cl in zip(dados["clusters"], self.clusters):
            bruto["cluster"] = cl.chave
            bruto["numeros"] = list(cl.numeros)
        dados["ultimo_sorteio"] = list(self.ultimo_sorteio)
        return dados

# -----------------------------
# Repositório de concursos
# -----------------------------
def parse_sorteios(texto: str) -> List[Sorteio]:
    """
    Converte o texto bruto (um concurso por linha, campos separados por tab ou
    vírgula; concurso e data ignorados) em sorteios ordenados.

    Linhas curtas são descartadas. Linhas com quantidade errada de dezenas são
    mantidas apenas com as dezenas válidas.
    """
    sorteios: List[Sorteio] = []
    irregulares = 0
    for linha in texto.strip().split("\n"):
        if len(linha) <= 10:
            continue
        dezenas = set()
        for campo in _SEPARADOR.split(linha)[2:]:
            try:
                n = int(campo.strip())
            except ValueError:
                continue
            if 1 <= n <= 25:
                dezenas.add(n)
        if len(dezenas) != TAMANHO_SORTEIO:
            irregulares += 1
        sorteios.append(tuple(sorted(dezenas)))

    if irregulares:
        logger.warning(f"{irregulares} linha(s) com quantidade de dezenas diferente de 15 mantidas parcialmente")
    logger.debug(f"Concursos lidos: {len(sorteios)}")
    return sorteios

def anexar_sorteios(texto_atual: str, novas_linhas: Iterable[str], hoje: Optional[date] = None) -> str:
    """
    Valida novos resultados (15 dezenas distintas de 1 a 25 por linha) e os
    insere no topo do histórico com numeração sequencial de concurso.

    A última linha informada é considerada a mais recente.
    """
    linhas = [l for l in (x.strip() for x in novas_linhas) if l]
    if not linhas:
        raise ValueError("Por favor, insira pelo menos um resultado.")

    novos: List[List[int]] = []
    for linha in linhas:
        numeros = [int(x) for x in re.findall(r"\d+", linha)]
        if len(numeros) != TAMANHO_SORTEIO:
            raise ValueError(f'Linha inválida: "{linha[:30]}...". Cada linha deve conter 15 números.')
        if len(set(numeros)) != TAMANHO_SORTEIO:
            raise ValueError(f'Linha com números repetidos: "{linha[:30]}...".')
        if any(n < 1 or n > 25 for n in numeros):
            raise ValueError(f'Linha com números fora do intervalo 1-25: "{linha[:30]}...".')
        novos.append(numeros)

    primeira = texto_atual.strip().split("\n")[0] if texto_atual.strip() else ""
    try:
        ultimo_concurso = int(_SEPARADOR.split(primeira)[0])
    except ValueError:
        raise ValueError(
            "Não foi possível determinar o último concurso. Verifique o formato dos dados históricos."
        ) from None

    hoje = hoje or date.today()
    data = hoje.strftime("%d/%m/%Y")
    registros = []
    for idx, numeros in enumerate(reversed(novos)):
        concurso = ultimo_concurso + len(novos) - idx
        registros.append("\t".join([str(concurso), data] + [str(n) for n in numeros]))

    logger.info(f"{len(novos)} concurso(s) anexado(s) após o concurso {ultimo_concurso}")
    return "\n".join(registros) + "\n" + texto_atual

# -----------------------------
# Frequência
# -----------------------------
def contar_ocorrencias(historico: List[Sorteio]) -> Dict[int, int]:
    contagem = Counter(n for s in historico for n in s)
    return {n: contagem.get(n, 0) for n in NUMS}

def calcular_frequencias(historico: List[Sorteio]) -> List[NumeroStat]:
    total = len(historico)
    contagem = contar_ocorrencias(historico)
    stats = [
        NumeroStat(n, c, round(c / total * 100, 2) if total else 0.0)
        for n, c in contagem.items()
    ]
    # sorted é estável: empates ficam em ordem crescente de dezena
    return sorted(stats, key=lambda s: s.frequencia, reverse=True)

# -----------------------------
# Atraso
# -----------------------------
def _intervalos(historico: List[Sorteio]) -> Dict[int, List[int]]:
    visto_em = {n: -1 for n in NUMS}
    gaps: Dict[int, List[int]] = {n: [] for n in NUMS}
    for idx, sorteio in enumerate(reversed(historico)):
        for n in sorteio:
            if visto_em[n] != -1:
                gaps[n].append(idx - visto_em[n])
            visto_em[n] = idx
    return gaps

def _atraso_atual(historico: List[Sorteio], numero: int) -> int:
    for idx, sorteio in enumerate(historico):
        if numero in sorteio:
            return idx
    # nunca sorteado: o atraso cobre todo o histórico
    return len(historico)

def calcular_atrasos(historico: List[Sorteio]) -> List[AtrasoStat]:
    stats = []
    for n, gaps in _intervalos(historico).items():
        arr = np.asarray(gaps, dtype=float)
        medio = float(arr.mean()) if arr.size else 0.0
        desvio = float(arr.std(ddof=1)) if arr.size > 1 else 0.0
        atual = _atraso_atual(historico, n)
        z = (atual - medio) / desvio if desvio > 0 else 0.0
        stats.append(AtrasoStat(n, atual, round(medio, 2), round(desvio, 2), round(z, 2)))
    return sorted(stats, key=lambda s: s.z_score, reverse=True)

# -----------------------------
# Pares
# -----------------------------
def calcular_pares(historico: List[Sorteio], top: int = TOP_PARES) -> List[ParStat]:
    contagem: Counter = Counter()
    for sorteio in historico:
        contagem.update(itertools.combinations(sorted(sorteio), 2))
    return [ParStat(par, qtd) for par, qtd in contagem.most_common(top)]

# -----------------------------
# Clusters de consecutivos
# -----------------------------
def sequencias_consecutivas(sorteio: Sorteio) -> List[Tuple[int, ...]]:
    """Sequências maximais de dezenas consecutivas (tamanho >= 2)."""
    if len(sorteio) < 2:
        return []
    seqs = []
    atual = [sorteio[0]]
    for n in sorteio[1:]:
        if n == atual[-1] + 1:
            atual.append(n)
            continue
        if len(atual) > 1:
            seqs.append(tuple(atual))
        atual = [n]
    if len(atual) > 1:
        seqs.append(tuple(atual))
    return seqs

def detectar_clusters(historico: List[Sorteio]) -> List[Cluster]:
    total = len(historico)
    ocorrencias: Dict[Tuple[int, ...], int] = {}
    recencia: Dict[Tuple[int, ...], int] = {}
    for idx, sorteio in enumerate(historico):
        for seq in sequencias_consecutivas(sorteio):
            ocorrencias[seq] = ocorrencias.get(seq, 0) + 1
            recencia[seq] = max(recencia.get(seq, -1), total - idx)

    clusters = [
        Cluster(seq, len(seq), qtd, recencia[seq], qtd * len(seq) ** 2)
        for seq, qtd in ocorrencias.items()
    ]
    return sorted(clusters, key=lambda c: c.score, reverse=True)

# -----------------------------
# Uniformidade / entropia
# -----------------------------
def calcular_qui_quadrado(contagem: Dict[int, int], total_sorteios: int) -> QuiQuadrado:
    graus = len(NUMS) - 1
    esperado = total_sorteios * TAMANHO_SORTEIO / len(NUMS)
    observados = np.array([contagem.get(n, 0) for n in NUMS], dtype=float)
    chi = float(((observados - esperado) ** 2 / esperado).sum()) if esperado > 0 else 0.0
    p_value = "< 0.05" if chi > VALORES_CRITICOS_QUI_QUADRADO[graus] else "> 0.05"
    return QuiQuadrado(round(chi, 2), graus, p_value, p_value == "> 0.05")

def calcular_entropia(contagem: Dict[int, int]) -> Entropia:
    obs = np.array([contagem.get(n, 0) for n in NUMS], dtype=float)
    if obs.sum() == 0:
        return Entropia(0.0, 0.0)
    p = obs[obs > 0] / obs.sum()
    h = float(-(p * np.log2(p)).sum())
    return Entropia(round(h, 2), round(h / np.log2(len(NUMS)) * 100, 1))

def historico_moldura_miolo(historico: List[Sorteio], janela: int = JANELA_MOLDURA) -> List[MolduraMiolo]:
    total = len(historico)
    res = []
    for idx, sorteio in enumerate(historico[:janela]):
        res.append(MolduraMiolo(
            total - idx,
            sum(1 for n in sorteio if n in MOLDURA),
            sum(1 for n in sorteio if n in MIOLO),
        ))
    return res

# -----------------------------
# API pública
# -----------------------------
def analisar(
    historico: List[Sorteio],
    avisar: Optional[Aviso] = None,
    executor: Optional[Executor] = None,
) -> Optional[Analise]:
    """
    Executa a análise completa. Retorna None (e emite aviso) quando o
    histórico tem menos de 20 concursos.
    """
    avisar = avisar or _aviso_padrao
    if len(historico) < MIN_SORTEIOS:
        avisar("Por favor, insira pelo menos 20 sorteios para uma análise estatística robusta.")
        return None

    if executor is not None:
        futuros = [
            executor.submit(f, historico)
            for f in (calcular_frequencias, calcular_atrasos, calcular_pares, detectar_clusters)
        ]
        frequencias, atrasos, pares, clusters = [f.result() for f in futuros]
    else:
        frequencias = calcular_frequencias(historico)
        atrasos = calcular_atrasos(historico)
        pares = calcular_pares(historico)
        clusters = detectar_clusters(historico)

    contagem = {s.numero: s.frequencia for s in frequencias}
    analise = Analise(
        frequencias=tuple(frequencias),
        atrasos=tuple(atrasos),
        pares=tuple(pares),
        clusters=tuple(clusters),
        qui_quadrado=calcular_qui_quadrado(contagem, len(historico)),
        entropia=calcular_entropia(contagem),
        moldura_miolo=tuple(historico_moldura_miolo(historico)),
        total_sorteios=len(historico),
        ultimo_sorteio=tuple(historico[0]),
    )
    logger.info(
        f"Análise concluída: {analise.total_sorteios} concursos, "
        f"{len(analise.clusters)} clusters, qui² {analise.qui_quadrado.chi_value}"
    )
    return analise
