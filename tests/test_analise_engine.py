import json
from concurrent.futures import ThreadPoolExecutor
from datetime import date

import pytest

from analise_engine import (
    MOLDURA,
    NUMS,
    anexar_sorteios,
    analisar,
    calcular_atrasos,
    calcular_entropia,
    calcular_frequencias,
    calcular_pares,
    contar_ocorrencias,
    detectar_clusters,
    historico_moldura_miolo,
    parse_sorteios,
    sequencias_consecutivas,
    calcular_qui_quadrado,
)

SEQUENCIAL = tuple(range(1, 16))


# -----------------------------
# Leitura
# -----------------------------
def test_parse_ignora_concurso_e_data(texto_historico, historico):
    assert parse_sorteios(texto_historico) == historico

def test_parse_aceita_virgula_e_ordena():
    texto = "10,02/01/2024,25,1,3,2,5,4,7,6,9,8,11,10,13,12,14"
    assert parse_sorteios(texto) == [(1, 2, 3, 4, 5, 6, 7, 8, 9, 10, 11, 12, 13, 14, 25)]

def test_parse_pula_linhas_curtas():
    texto = "1\t01/01\n\n2\t02/01/2024\t" + "\t".join(map(str, SEQUENCIAL))
    assert parse_sorteios(texto) == [SEQUENCIAL]

def test_parse_mantem_linha_com_dezenas_fora_do_intervalo():
    texto = "7\t03/01/2024\t1\t2\t3\t30\t0\tabc\t4"
    assert parse_sorteios(texto) == [(1, 2, 3, 4)]

# -----------------------------
# Frequência
# -----------------------------
def test_frequencias_historico_repetido():
    stats = calcular_frequencias([SEQUENCIAL] * 20)
    por_numero = {s.numero: s for s in stats}
    for n in range(1, 16):
        assert por_numero[n].frequencia == 20
        assert por_numero[n].percentual == 100.0
    for n in range(16, 26):
        assert por_numero[n].frequencia == 0

def test_frequencias_somam_quinze_por_concurso(historico):
    stats = calcular_frequencias(historico)
    assert len(stats) == 25
    assert sum(s.frequencia for s in stats) == len(historico) * 15

def test_frequencias_empate_em_ordem_crescente():
    stats = calcular_frequencias([SEQUENCIAL] * 20)
    assert [s.numero for s in stats] == list(range(1, 26))

# -----------------------------
# Atraso
# -----------------------------
def test_atrasos_media_desvio_e_z():
    # mais recente primeiro; dezena 1 nos índices 0, 2 e 5 de 8 concursos
    historico = [(1,), (2,), (1,), (2,), (2,), (1,), (2,), (2,)]
    st = {s.numero: s for s in calcular_atrasos(historico)}[1]
    assert st.atraso_atual == 0
    assert st.atraso_medio == 2.5
    assert st.desvio_padrao == 0.71
    assert st.z_score == -3.54

def test_atraso_sem_variacao_tem_z_zero():
    stats = {s.numero: s for s in calcular_atrasos([SEQUENCIAL] * 20)}
    assert stats[1].atraso_medio == 1.0
    assert stats[1].desvio_padrao == 0.0
    assert stats[1].z_score == 0.0

def test_atraso_dezena_nunca_sorteada():
    stats = {s.numero: s for s in calcular_atrasos([SEQUENCIAL] * 20)}
    assert stats[25].atraso_atual == 20
    assert stats[25].atraso_medio == 0.0
    assert stats[25].z_score == 0.0

def test_atrasos_ordenados_por_z(historico):
    zs = [s.z_score for s in calcular_atrasos(historico)]
    assert zs == sorted(zs, reverse=True)

# -----------------------------
# Pares
# -----------------------------
def test_pares_top_vinte():
    pares = calcular_pares([SEQUENCIAL] * 20)
    assert len(pares) == 20
    assert pares[0].par == (1, 2)
    assert pares[0].chave == "1-2"
    assert all(p.ocorrencias == 20 for p in pares)

def test_pares_ordenados(historico):
    qtds = [p.ocorrencias for p in calcular_pares(historico)]
    assert qtds == sorted(qtds, reverse=True)

# -----------------------------
# Clusters
# -----------------------------
def test_sequencias_exemplo():
    assert sequencias_consecutivas((5, 6, 7, 10, 12, 13, 20)) == [(5, 6, 7), (12, 13)]

def test_clusters_exemplo():
    clusters = detectar_clusters([(5, 6, 7, 10, 12, 13, 20)])
    assert {c.chave: c.tamanho for c in clusters} == {"5-6-7": 3, "12-13": 2}
    assert all(20 not in c.numeros for c in clusters)

def test_clusters_acumulam_por_sequencia_exata():
    historico = [(5, 6, 10), (5, 6, 7, 20), (1, 5, 6, 7)]
    clusters = {c.chave: c for c in detectar_clusters(historico)}
    assert clusters["5-6-7"].ocorrencias == 2
    assert clusters["5-6-7"].score == 2 * 9
    assert clusters["5-6"].ocorrencias == 1
    assert clusters["5-6"].ultimo_sorteio == 3
    assert clusters["5-6-7"].ultimo_sorteio == 2

def test_clusters_tamanho_minimo(historico):
    clusters = detectar_clusters(historico)
    assert clusters
    assert all(c.tamanho >= 2 for c in clusters)
    scores = [c.score for c in clusters]
    assert scores == sorted(scores, reverse=True)

# -----------------------------
# Qui-quadrado / entropia / moldura
# -----------------------------
def test_qui_quadrado_uniforme():
    contagem = {n: 12 for n in NUMS}
    res = calcular_qui_quadrado(contagem, 20)
    assert res.chi_value == 0.0
    assert res.graus_liberdade == 24
    assert res.p_value == "> 0.05"
    assert res.uniforme

def test_qui_quadrado_desvio():
    contagem = contar_ocorrencias([SEQUENCIAL] * 20)
    res = calcular_qui_quadrado(contagem, 20)
    assert res.chi_value == 200.0
    assert res.p_value == "< 0.05"
    assert not res.uniforme

def test_entropia_maxima_para_distribuicao_uniforme():
    res = calcular_entropia({n: 12 for n in NUMS})
    assert res.normalizada == 100.0

def test_moldura_miolo_ultimos_cinquenta(historico):
    serie = historico_moldura_miolo(historico)
    assert len(serie) == 50
    assert serie[0].sorteio == len(historico)
    assert serie[0].moldura == sum(1 for n in historico[0] if n in MOLDURA)
    assert all(p.moldura + p.miolo == 15 for p in serie)

# -----------------------------
# Análise completa
# -----------------------------
def test_analisar_exige_vinte_concursos():
    avisos = []
    assert analisar([SEQUENCIAL] * 19, avisar=avisos.append) is None
    assert len(avisos) == 1

def test_analisar_retrato(analise, historico):
    assert analise.total_sorteios == len(historico)
    assert analise.ultimo_sorteio == historico[0]
    assert len(analise.frequencias) == 25
    assert len(analise.atrasos) == 25
    assert len(analise.pares) == 20
    json.dumps(analise.para_dict())

def test_analisar_com_executor_igual_sequencial(historico, analise):
    with ThreadPoolExecutor(max_workers=4) as executor:
        paralela = analisar(historico, executor=executor)
    assert paralela == analise

# -----------------------------
# Inclusão de concursos
# -----------------------------
def test_anexar_sorteios_numera_e_insere_no_topo():
    atual = "100\t01/01/2024\t" + "\t".join(map(str, SEQUENCIAL))
    novos = ["11 12 13 14 15 16 17 18 19 20 21 22 23 24 25", "1 3 5 7 9 11 13 15 17 19 21 23 25 2 4"]
    texto = anexar_sorteios(atual, novos, hoje=date(2024, 3, 9))
    linhas = texto.split("\n")
    assert linhas[0].startswith("102\t09/03/2024\t1\t3\t5")
    assert linhas[1].startswith("101\t09/03/2024\t11\t12")
    assert linhas[2] == atual
    assert parse_sorteios(texto)[0] == (1, 2, 3, 4, 5, 7, 9, 11, 13, 15, 17, 19, 21, 23, 25)

@pytest.mark.parametrize("linha", [
    "1 2 3",
    "1 1 2 3 4 5 6 7 8 9 10 11 12 13 14",
    "1 2 3 4 5 6 7 8 9 10 11 12 13 14 26",
])
def test_anexar_sorteios_rejeita_linha_invalida(linha):
    atual = "100\t01/01/2024\t" + "\t".join(map(str, SEQUENCIAL))
    with pytest.raises(ValueError):
        anexar_sorteios(atual, [linha])

def test_anexar_sorteios_sem_concurso_anterior():
    with pytest.raises(ValueError, match="último concurso"):
        anexar_sorteios("", ["1 2 3 4 5 6 7 8 9 10 11 12 13 14 15"])
