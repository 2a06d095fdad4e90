import asyncio
import threading
from types import SimpleNamespace

import pytest

import lotofacil_ia
from lotofacil_ia import BotLotofacil

NOVA_LINHA = "1 3 5 7 9 11 13 15 17 19 21 23 25 2 4"


class MensagemFalsa:
    def __init__(self, texto):
        self.text = texto
        self.respostas = []

    async def reply_text(self, texto, **kwargs):
        self.respostas.append(texto)


def _update(texto):
    return SimpleNamespace(
        message=MensagemFalsa(texto),
        effective_user=SimpleNamespace(id=1),
        effective_chat=SimpleNamespace(id=1),
    )


@pytest.fixture
def bot_lotofacil(tmp_path, texto_historico, monkeypatch):
    caminho = tmp_path / "historico.txt"
    caminho.write_text(texto_historico, encoding="utf-8")
    instancia = BotLotofacil(str(caminho), str(tmp_path / "preferencias.json"))
    assert instancia.carregar_dados()
    monkeypatch.setattr(lotofacil_ia, "bot", instancia)
    yield instancia
    instancia._executor.shutdown(wait=True)


def test_inserir_resultados_grava_e_recarrega(bot_lotofacil, historico):
    resultado = bot_lotofacil.inserir_resultados([NOVA_LINHA])
    assert resultado == sorted(map(int, NOVA_LINHA.split()))
    assert len(bot_lotofacil.historico) == len(historico) + 1
    assert bot_lotofacil.analise.total_sorteios == len(historico) + 1
    assert bot_lotofacil.texto_historico.startswith("3001\t")


def test_comando_inserir_roda_fora_do_loop(bot_lotofacil, monkeypatch):
    threads = []
    original = bot_lotofacil.inserir_resultados

    def inserir(linhas):
        threads.append(threading.current_thread())
        return original(linhas)

    monkeypatch.setattr(bot_lotofacil, "inserir_resultados", inserir)
    update = _update(f"/inserir {NOVA_LINHA}")
    asyncio.run(lotofacil_ia.comando_inserir(update, SimpleNamespace(args=[])))

    assert len(threads) == 1
    assert threads[0] is not threading.main_thread()
    assert threads[0].name.startswith("analise_")
    assert update.message.respostas[0].startswith("✅ Resultado adicionado")


def test_comando_inserir_linha_invalida(bot_lotofacil, historico):
    update = _update("/inserir 1 2 3")
    asyncio.run(lotofacil_ia.comando_inserir(update, SimpleNamespace(args=[])))
    assert update.message.respostas[0].startswith("❌")
    assert len(bot_lotofacil.historico) == len(historico)
