# -*- coding: utf-8 -*-
"""
assistente.py
Fronteira com o serviço externo de geração de texto:
- Resumo da análise em forma de prompt (pt-BR)
- Consumo de respostas em streaming
- Leitura e aplicação das diretivas "[Sugerir ajuste: Mudar <Regra> para a-b]"
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Callable, Iterable, List, Tuple
import logging
import re

from analise_engine import Analise
from apostas_engine import Config

logger = logging.getLogger(__name__)

# recebe a mensagem e devolve os pedaços de texto à medida que chegam
ServicoTexto = Callable[[str], Iterable[str]]

MSG_FALHA_SERVICO = "Ocorreu um erro. Por favor, tente novamente."

REGRAS_SUGESTAO = {
    "Soma": "faixa_soma",
    "Pares": "faixa_pares",
    "Moldura": "faixa_moldura",
}

_DIRETIVA = re.compile(r"\[Sugerir ajuste:\s*(.*?)\]")
_MUDANCA = re.compile(r"Mudar (\w+) para (\d+)-(\d+)")


@dataclass(frozen=True)
class Sugestao:
    regra: str
    faixa: Tuple[int, int]
    texto: str


def montar_prompt_inicial(analise: Analise) -> str:
    quentes = ", ".join(str(s.numero) for s in analise.frequencias[:5])
    frios = "; ".join(
        f"{s.numero} (Z-Score: {s.z_score:.2f})"
        for s in [a for a in analise.atrasos if a.z_score > 1.5][:5]
    )
    clusters = "; ".join(
        f"[{', '.join(str(n) for n in c.numeros)}] (Tamanho: {c.tamanho}, Ocorrências: {c.ocorrencias})"
        for c in analise.clusters[:3]
    )
    pares = "; ".join(f"{p.chave} ({p.ocorrencias} vezes)" for p in analise.pares[:3])
    qui = analise.qui_quadrado
    if qui.uniforme:
        veredito = f"Aprovado (p-valor: {qui.p_value}), a distribuição dos números parece uniforme."
    else:
        veredito = f"Reprovado (p-valor: {qui.p_value}), há indícios de desvio da uniformidade."

    return (
        "Você é uma analista de loteria especialista e interativa. Forneça uma análise estratégica "
        "e depois converse com o usuário para refinar a estratégia. Fale em Português do Brasil.\n\n"
        f"**Resumo dos Dados da Análise de {analise.total_sorteios} Sorteios:**\n"
        f"- **Números Mais Frequentes (Quentes):** {quentes}\n"
        f"- **Números Mais Atrasados (Frios, Z-Score > 1.5):** {frios or 'Nenhum significativamente atrasado'}\n"
        f"- **Pares Mais Fortes:** {pares or 'Nenhum par com forte conexão'}\n"
        f"- **Clusters Mais Relevantes:** {clusters or 'Nenhum cluster forte detectado'}\n"
        f"- **Validação Estatística (Qui-Quadrado):** {veredito}\n\n"
        "**Sua Análise Inicial (use Markdown):**\n"
        "1. **Veredito:** Um parágrafo de resumo sobre o estado atual do jogo.\n"
        "2. **Foco Estratégico:** Com base nos dados, qual deveria ser o foco? Justifique.\n"
        "3. **Conexões:** Destaque 2 ou 3 números ou grupos que chamam atenção.\n"
        "4. **Sugestão Acionável:** Se notar uma tendência forte, ofereça um ajuste de regra, "
        "estritamente no formato: `[Sugerir ajuste: Mudar Soma para 175-205]`.\n"
        "5. **Convite à Conversa:** Termine com uma pergunta aberta.\n"
    )

def extrair_sugestoes(texto: str) -> List[Sugestao]:
    sugestoes = []
    for diretiva in _DIRETIVA.findall(texto or ""):
        m = _MUDANCA.search(diretiva)
        if not m:
            logger.debug(f"Diretiva ignorada: {diretiva}")
            continue
        regra, lo, hi = m.group(1), int(m.group(2)), int(m.group(3))
        sugestoes.append(Sugestao(regra, (lo, hi), diretiva.strip()))
    return sugestoes

def aplicar_sugestao(cfg: Config, sugestao: Sugestao) -> Config:
    """Nova Config com a faixa sugerida; regra desconhecida ou faixa inválida mantém a atual."""
    campo = REGRAS_SUGESTAO.get(sugestao.regra)
    if campo is None:
        logger.info(f"Regra sem correspondência na configuração: {sugestao.regra}")
        return cfg
    try:
        novo = replace(cfg, **{campo: sugestao.faixa})
    except ValueError as e:
        logger.warning(f"Sugestão rejeitada ({sugestao.texto}): {e}")
        return cfg
    logger.info(f"Regra '{sugestao.regra}' atualizada para {sugestao.faixa[0]}-{sugestao.faixa[1]}")
    return novo

def conversar(servico: ServicoTexto, mensagem: str) -> Tuple[str, List[Sugestao]]:
    partes: List[str] = []
    try:
        for pedaco in servico(mensagem):
            partes.append(pedaco)
    except Exception as e:
        logger.error(f"Falha no serviço de texto: {e}", exc_info=True)
        return MSG_FALHA_SERVICO, []
    texto = "".join(partes)
    return texto, extrair_sugestoes(texto)
