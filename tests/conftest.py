import random

import pytest

from analise_engine import analisar


@pytest.fixture
def historico():
    rng = random.Random(2024)
    return [tuple(sorted(rng.sample(range(1, 26), 15))) for _ in range(60)]


@pytest.fixture
def analise(historico):
    return analisar(historico)


@pytest.fixture
def texto_historico(historico):
    linhas = []
    for idx, sorteio in enumerate(historico):
        concurso = 3000 - idx
        linhas.append("\t".join([str(concurso), "01/01/2024"] + [f"{n:02d}" for n in sorteio]))
    return "\n".join(linhas)
