from apostas_engine import Config
from assistente import (
    MSG_FALHA_SERVICO,
    Sugestao,
    aplicar_sugestao,
    conversar,
    extrair_sugestoes,
    montar_prompt_inicial,
)


def test_prompt_resume_analise(analise):
    prompt = montar_prompt_inicial(analise)
    assert f"Análise de {analise.total_sorteios} Sorteios" in prompt
    quentes = ", ".join(str(s.numero) for s in analise.frequencias[:5])
    assert quentes in prompt
    assert "[Sugerir ajuste: Mudar Soma para 175-205]" in prompt
    assert analise.qui_quadrado.p_value in prompt

def test_extrair_sugestoes():
    texto = (
        "Veredito...\n`[Sugerir ajuste: Mudar Soma para 175-205]` e também "
        "[Sugerir ajuste: Mudar Pares para 7-8] [Sugerir ajuste: algo livre]"
    )
    sugestoes = extrair_sugestoes(texto)
    assert [(s.regra, s.faixa) for s in sugestoes] == [("Soma", (175, 205)), ("Pares", (7, 8))]

def test_extrair_sugestoes_sem_diretiva():
    assert extrair_sugestoes("nada a sugerir") == []

def test_aplicar_sugestao():
    cfg = aplicar_sugestao(Config(), Sugestao("Moldura", (9, 10), "Mudar Moldura para 9-10"))
    assert cfg.faixa_moldura == (9, 10)
    assert cfg.faixa_soma == Config().faixa_soma

def test_aplicar_sugestao_regra_desconhecida():
    cfg = Config()
    assert aplicar_sugestao(cfg, Sugestao("Primos", (2, 4), "Mudar Primos para 2-4")) is cfg

def test_aplicar_sugestao_faixa_invertida():
    cfg = Config()
    assert aplicar_sugestao(cfg, Sugestao("Soma", (210, 180), "Mudar Soma para 210-180")) is cfg

def test_conversar_agrega_streaming():
    def servico(mensagem):
        yield "Sugiro "
        yield "[Sugerir ajuste: Mudar Soma para 170-200]"

    texto, sugestoes = conversar(servico, "oi")
    assert texto == "Sugiro [Sugerir ajuste: Mudar Soma para 170-200]"
    assert sugestoes[0].faixa == (170, 200)

def test_conversar_falha_do_servico():
    def servico(mensagem):
        yield "parcial"
        raise ConnectionError("fora do ar")

    assert conversar(servico, "oi") == (MSG_FALHA_SERVICO, [])
