# =========================
# Bloco 1 — IMPORTS & SETUP
# =========================

# Stdlib
import os
import sys
import asyncio
import threading
import contextlib
from io import BytesIO
from dataclasses import replace
from concurrent.futures import ThreadPoolExecutor
import logging
import warnings
from typing import Optional, Dict, List
from threading import Lock

from dotenv import load_dotenv

load_dotenv()

# ---- Logging precisa estar definido antes de qualquer uso de logger ----
warnings.filterwarnings("ignore", category=UserWarning, module="matplotlib")
logging.basicConfig(
    format='{"time": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s"}',
    level=logging.INFO,
)
logger = logging.getLogger(__name__)

# Terceiros
import pandas as pd
from cachetools import TTLCache

# Matplotlib: backend seguro para servidor/headless
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt

# Telegram (v20+)
import telegram
from telegram import Update, InputFile
from telegram.ext import ApplicationBuilder, CommandHandler, CallbackContext

# Núcleo
from analise_engine import Analise, anexar_sorteios, analisar, parse_sorteios
from apostas_engine import Aposta, Config, backtest, conferir_apostas, gerar_apostas, parse_numeros
from assistente import Sugestao, aplicar_sugestao, extrair_sugestoes, montar_prompt_inicial
from preferencias import ArmazemPreferencias, carregar_config, salvar_config

from time import time as _now


def _get_bot_token() -> Optional[str]:
    """
    Busca o token em múltiplos nomes comuns e .env.
    Não loga o valor do token. Retorna None se não encontrar.
    """
    for key in ("TELEGRAM_BOT_TOKEN", "BOT_TOKEN", "TOKEN"):
        val = os.getenv(key)
        if val and val.strip():
            return val.strip()
    return None

# ================================
# Bloco 2 — Constantes
# ================================

CAMINHO_HISTORICO = os.getenv("LOTOFACIL_HISTORICO", "lotofacil_historico.txt")
CAMINHO_PREFERENCIAS = os.getenv("LOTOFACIL_PREFERENCIAS", "preferencias.json")
TIMEOUT_GERACAO = int(os.getenv("LOTOFACIL_TIMEOUT_GERACAO", 60))

AVISO_LEGAL = (
    "<b>AVISO LEGAL</b>\n"
    "• Este bot é uma ferramenta analítica para entretenimento. Nenhum prêmio é garantido.\n"
    "• As estatísticas descrevem o passado e não alteram a probabilidade dos próximos sorteios.\n"
)

MANUAL_USUARIO = (
    "🎰 <b>Bot Lotofácil — Análise e Predições</b> 🎰\n\n"
    "/analise  - Gráficos e estatísticas do histórico\n"
    "/atrasos  - Tabela de atrasos e z-score\n"
    "/aposta [n] [seed] - Gera até n apostas (1 a 20)\n"
    "/backtest k - Confere a aposta k contra os últimos 100 concursos\n"
    "/inserir  - Adiciona resultado(s), 15 dezenas por linha\n"
    "/config   - Mostra as regras atuais\n"
    "/ajuste Soma 175-205 - Ajusta uma faixa (Soma, Pares, Moldura)\n"
    "/resumo   - Resumo da análise para o assistente\n"
)

MSG_RATE_LIMIT = "⏳ Aguarde alguns segundos antes de usar novamente."

_CACHE_LOCK = Lock()
_DATA_LOCK = Lock()

# Controle de rate-limit
_rate_limit_map: Dict[int, Dict[str, float]] = {}

async def rate_limit(update: Update, comando: str, segundos: int = 5) -> bool:
    user_id = update.effective_user.id
    agora = _now()
    user_map = _rate_limit_map.setdefault(user_id, {})
    ultimo = user_map.get(comando, 0.0)

    if agora - ultimo < segundos:
        await update.message.reply_text(MSG_RATE_LIMIT)
        return False

    user_map[comando] = agora
    return True

# ======================================
# Bloco 3 — BotLotofacil (estado da sessão)
# ======================================

class BotLotofacil:
    def __init__(self, caminho_historico: str = CAMINHO_HISTORICO, caminho_preferencias: str = CAMINHO_PREFERENCIAS):
        self.caminho_historico = caminho_historico
        self.armazem = ArmazemPreferencias(caminho_preferencias)
        self.texto_historico = ""
        self.historico = []
        self.analise: Optional[Analise] = None
        self.avisos: List[str] = []

        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="analise_")
        self._aposta_cache = TTLCache(maxsize=1000, ttl=1800)

    # -------------------------
    # Dados / análise
    # -------------------------
    def carregar_dados(self, paralelo: bool = True) -> bool:
        """Lê o histórico do disco e refaz a análise. Retorna False se indisponível."""
        if not os.path.exists(self.caminho_historico):
            logger.error(f"Arquivo de histórico não encontrado em {os.path.abspath(self.caminho_historico)}")
            return False

        with open(self.caminho_historico, "r", encoding="utf-8") as f:
            texto = f.read()

        avisos: List[str] = []
        historico = parse_sorteios(texto)
        analise = analisar(historico, avisar=avisos.append, executor=self._executor if paralelo else None)
        with _DATA_LOCK:
            self.texto_historico = texto
            self.historico = historico
            self.analise = analise
            self.avisos = avisos
        if analise is None:
            logger.warning(f"Análise indisponível: {'; '.join(avisos)}")
            return False
        logger.info(f"Dados carregados com sucesso. Concursos: {len(historico)}")
        return True

    def inserir_resultados(self, linhas: List[str]) -> Optional[List[int]]:
        """Grava novos concursos no topo do histórico. Devolve o resultado se for um só."""
        novo_texto = anexar_sorteios(self.texto_historico, linhas)
        tmp = f"{self.caminho_historico}.tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(novo_texto)
        os.replace(tmp, self.caminho_historico)
        # chamado a partir de um worker do executor
        self.carregar_dados(paralelo=False)
        validas = [l for l in linhas if l.strip()]
        return list(self.historico[0]) if len(validas) == 1 and self.historico else None

    # -------------------------
    # Configuração por chat
    # -------------------------
    def config(self, chat_id: int) -> Config:
        return carregar_config(self.armazem, str(chat_id))

    def salvar(self, chat_id: int, cfg: Config) -> None:
        salvar_config(self.armazem, cfg, str(chat_id))

    # -------------------------
    # Geração
    # -------------------------
    def gerar(
        self,
        cfg: Config,
        seed: Optional[int],
        cancelar: threading.Event,
        avisos: List[str],
    ) -> List[Aposta]:
        return gerar_apostas(self.analise, cfg, seed=seed, cancelar=cancelar, avisar=avisos.append)

    def get_cached_apostas(self, user_id: int) -> Optional[List[Aposta]]:
        with _CACHE_LOCK:
            return self._aposta_cache.get(user_id)

    def set_cached_apostas(self, user_id: int, apostas: List[Aposta]) -> None:
        with _CACHE_LOCK:
            self._aposta_cache[user_id] = apostas
            logger.debug(f"Cache SET para usuário {user_id}")

    # -------------------------
    # Apresentação
    # -------------------------
    def gerar_grafico_frequencia(self) -> BytesIO:
        """Gera gráfico de frequência dos números."""
        dados = sorted((s.numero, s.frequencia) for s in self.analise.frequencias)
        nums, freqs = zip(*dados)
        plt.figure(figsize=(10, 5))
        plt.bar(nums, freqs)
        plt.title('Frequência de Números na Lotofácil')
        plt.xlabel('Número')
        plt.ylabel('Frequência')
        plt.xticks(range(1, 26))
        plt.grid(axis='y', linestyle='--', alpha=0.7)

        buf = BytesIO()
        plt.savefig(buf, format='png')
        buf.seek(0)
        plt.close()
        return buf

    def gerar_grafico_moldura(self) -> BytesIO:
        """Moldura x miolo nos últimos 50 concursos (ordem cronológica)."""
        pontos = list(reversed(self.analise.moldura_miolo))
        plt.figure(figsize=(10, 4))
        plt.plot([p.sorteio for p in pontos], [p.moldura for p in pontos], label='Moldura')
        plt.plot([p.sorteio for p in pontos], [p.miolo for p in pontos], label='Miolo')
        plt.title('Moldura x Miolo — últimos concursos')
        plt.xlabel('Concurso')
        plt.legend()
        plt.grid(linestyle='--', alpha=0.5)

        buf = BytesIO()
        plt.savefig(buf, format='png')
        buf.seek(0)
        plt.close()
        return buf

    def tabela_atrasos(self) -> str:
        df = pd.DataFrame(
            [(s.numero, s.atraso_atual, s.atraso_medio, s.z_score) for s in self.analise.atrasos],
            columns=['Nº', 'Atual', 'Médio', 'Z'],
        ).sort_values('Nº')
        return df.to_string(index=False)


def formatar_aposta(i: int, ap: Aposta) -> str:
    return (
        f"<b>#{i} — Score {ap.score:.1f}</b>\n"
        f"{' '.join(f'{n:02d}' for n in ap.numeros)}\n"
        f"Soma: {ap.soma} | Par/Ímpar: {ap.pares}/{ap.impares} | Mold/Miolo: {ap.moldura}/{ap.miolo}\n"
    )

def formatar_config(cfg: Config) -> str:
    return (
        "<b>⚙️ Regras atuais</b>\n"
        f"Quantidade: {cfg.quantidade}\n"
        f"Quentes/Frios/Clusters: {cfg.usar_quentes}/{cfg.usar_frios}/{cfg.usar_clusters}\n"
        f"Soma: {cfg.faixa_soma[0]}-{cfg.faixa_soma[1]} | Pares: {cfg.faixa_pares[0]}-{cfg.faixa_pares[1]}\n"
        f"Moldura: {cfg.faixa_moldura[0]}-{cfg.faixa_moldura[1]} | Primos: {cfg.faixa_primos[0]}-{cfg.faixa_primos[1]}"
        f" | Fibonacci: {cfg.faixa_fibonacci[0]}-{cfg.faixa_fibonacci[1]}\n"
        f"Máx. repetidos: {cfg.max_repetidos_anterior} | Máx. final: {cfg.max_mesmo_final}"
        f" | Máx. consecutivos: {cfg.max_consecutivos}\n"
        f"Fixas: {', '.join(map(str, parse_numeros(cfg.incluir))) or '-'}"
        f" | Excluídas: {', '.join(map(str, parse_numeros(cfg.excluir))) or '-'}\n"
        f"Pesos F/C/Z: {cfg.peso_frequencia}/{cfg.peso_conectividade}/{cfg.peso_zscore}\n"
    )

# =========================
# Bloco 4 — Telegram (handlers)
# =========================

bot: Optional[BotLotofacil] = None

def requer_analise(func):
    async def wrapper(update: Update, context: CallbackContext, *args, **kwargs):
        if bot is None or bot.analise is None:
            avisos = "\n".join(bot.avisos) if bot else ""
            await update.message.reply_text(f"❌ Dados indisponíveis. {avisos}".strip())
            return
        try:
            return await func(update, context, *args, **kwargs)
        except Exception as e:
            logger.error(f"Erro inesperado em {func.__name__}: {str(e)}", exc_info=True)
            await update.message.reply_text("❌ Ocorreu um erro inesperado. Tente novamente.")
    return wrapper

async def start(update: Update, context: CallbackContext) -> None:
    await update.message.reply_text(AVISO_LEGAL, parse_mode='HTML')
    await update.message.reply_text(MANUAL_USUARIO, parse_mode='HTML')

@requer_analise
async def comando_analise(update: Update, context: CallbackContext) -> None:
    if not await rate_limit(update, "analise"):
        return

    analise = bot.analise
    await update.message.reply_photo(photo=InputFile(bot.gerar_grafico_frequencia()), caption='Frequência dos números')
    await update.message.reply_photo(photo=InputFile(bot.gerar_grafico_moldura()), caption='Moldura x Miolo')

    qui = analise.qui_quadrado
    mensagem = (
        f"<b>📊 Estatísticas ({analise.total_sorteios} concursos)</b>\n\n"
        f"<b>Mais frequentes:</b> {', '.join(str(s.numero) for s in analise.frequencias[:5])}\n"
        f"<b>Menos frequentes:</b> {', '.join(str(s.numero) for s in analise.frequencias[-5:])}\n"
        f"<b>Pares mais fortes:</b> {', '.join(f'{p.chave} ({p.ocorrencias})' for p in analise.pares[:5])}\n"
        f"<b>Qui-quadrado:</b> {qui.chi_value} (gl={qui.graus_liberdade}, p {qui.p_value}) — "
        f"{'uniforme' if qui.uniforme else 'desvio da uniformidade'}\n"
        f"<b>Entropia:</b> {analise.entropia.entropia} bits ({analise.entropia.normalizada}%)\n\n"
        "<b>Clusters mais relevantes:</b>\n"
    )
    for cl in analise.clusters[:5]:
        mensagem += f"[{cl.chave}] tam {cl.tamanho} · {cl.ocorrencias}x · score {cl.score}\n"
    await update.message.reply_text(mensagem, parse_mode='HTML')

@requer_analise
async def comando_atrasos(update: Update, context: CallbackContext) -> None:
    await update.message.reply_text(f"<pre>{bot.tabela_atrasos()}</pre>", parse_mode='HTML')

@requer_analise
async def comando_aposta(update: Update, context: CallbackContext) -> None:
    if not await rate_limit(update, "aposta"):
        return

    chat_id = update.effective_chat.id
    user_id = update.effective_user.id
    args = context.args or []

    cfg = bot.config(chat_id)
    if args and args[0].isdigit():
        n = max(1, min(int(args[0]), 20))
        cfg = replace(cfg, quantidade=n)
    seed = int(args[1]) if len(args) > 1 and args[1].lstrip('-').isdigit() else None

    cancelar = threading.Event()
    avisos: List[str] = []
    loop = asyncio.get_running_loop()
    tarefa = loop.run_in_executor(bot._executor, bot.gerar, cfg, seed, cancelar, avisos)
    try:
        apostas = await asyncio.wait_for(asyncio.shield(tarefa), timeout=TIMEOUT_GERACAO)
    except asyncio.TimeoutError:
        cancelar.set()
        logger.warning(f"Timeout gerando apostas para {user_id}; geração cancelada")
        apostas = await tarefa

    for aviso in avisos:
        await safe_send_message(context, chat_id, f"⚠️ {aviso}")
    if not apostas:
        if not avisos:
            await safe_send_message(context, chat_id, "Nenhuma combinação satisfez os filtros. Tente afrouxar as regras.")
        return

    bot.set_cached_apostas(user_id, apostas)
    mensagem = "🎲 <b>Predições</b> 🎲\n\n" + "\n".join(formatar_aposta(i, ap) for i, ap in enumerate(apostas, 1))
    await safe_send_message(context, chat_id, mensagem)

@requer_analise
async def comando_backtest(update: Update, context: CallbackContext) -> None:
    apostas = bot.get_cached_apostas(update.effective_user.id)
    if not apostas:
        await update.message.reply_text("Gere apostas com /aposta antes do backtest.")
        return
    args = context.args or []
    k = int(args[0]) if args and args[0].isdigit() else 1
    if not 1 <= k <= len(apostas):
        await update.message.reply_text(f"Escolha uma aposta entre 1 e {len(apostas)}.")
        return

    res = backtest(apostas[k - 1].numeros, bot.historico)
    premios = ", ".join(f"{h} acertos: {q}x" for h, q in res.premios.items()) or "nenhum"
    linhas = "\n".join(f"#{l.concurso}: {l.acertos}" for l in res.linhas[:15])
    await update.message.reply_text(
        f"<b>Backtest da aposta #{k}</b> ({len(res.linhas)} concursos)\n"
        f"{' '.join(f'{n:02d}' for n in res.aposta)}\n\n"
        f"<b>Premiações (11+):</b> {premios}\n\n<pre>{linhas}</pre>",
        parse_mode='HTML',
    )

async def comando_inserir(update: Update, context: CallbackContext) -> None:
    if bot is None:
        return
    texto = update.message.text or ""
    linhas = texto.split("\n")
    linhas[0] = linhas[0].partition(" ")[2]
    loop = asyncio.get_running_loop()
    try:
        resultado = await loop.run_in_executor(bot._executor, bot.inserir_resultados, linhas)
    except ValueError as e:
        await update.message.reply_text(f"❌ {e}")
        return
    except OSError as e:
        logger.error(f"Falha ao gravar histórico: {e}", exc_info=True)
        await update.message.reply_text("❌ Não foi possível gravar o histórico.")
        return

    if resultado is None:
        await update.message.reply_text(
            "✅ Novos dados históricos adicionados. Use /aposta para gerar novas predições."
        )
        return

    apostas = bot.get_cached_apostas(update.effective_user.id) or []
    conferencia = conferir_apostas([ap.numeros for ap in apostas], resultado)
    mensagem = f"✅ Resultado adicionado: {' '.join(f'{n:02d}' for n in resultado)}\n"
    for c in conferencia:
        mensagem += f"Aposta #{c['indice']}: {c['acertos']} acertos{' 🏆' if c['premiada'] else ''}\n"
    await update.message.reply_text(mensagem)

async def comando_config(update: Update, context: CallbackContext) -> None:
    if bot is None:
        return
    await update.message.reply_text(formatar_config(bot.config(update.effective_chat.id)), parse_mode='HTML')

async def comando_ajuste(update: Update, context: CallbackContext) -> None:
    if bot is None:
        return
    args = context.args or []
    sugestoes: List[Sugestao] = extrair_sugestoes(f"[Sugerir ajuste: Mudar {' para '.join(args[:2])}]")
    if len(args) != 2 or not sugestoes:
        await update.message.reply_text("Uso: /ajuste Soma 175-205 (regras: Soma, Pares, Moldura)")
        return

    chat_id = update.effective_chat.id
    atual = bot.config(chat_id)
    nova = aplicar_sugestao(atual, sugestoes[0])
    if nova == atual:
        await update.message.reply_text("Nenhuma alteração aplicada.")
        return
    bot.salvar(chat_id, nova)
    await update.message.reply_text(
        f"Ok, regra '{args[0]}' atualizada para o intervalo {args[1]}. Use /aposta para gerar novas predições."
    )

@requer_analise
async def comando_resumo(update: Update, context: CallbackContext) -> None:
    await update.message.reply_text(montar_prompt_inicial(bot.analise))


async def error_handler(update: Update, context: CallbackContext) -> None:
    """Tratamento de erros, incluindo timeouts."""
    error = context.error
    logger.error(f"Erro no bot: {str(error)}", exc_info=True)

    if not isinstance(update, Update) or not update.effective_chat:
        return
    chat_id = update.effective_chat.id
    try:
        if isinstance(error, telegram.error.TimedOut):
            await safe_send_message(context, chat_id, "⌛ O sistema está ocupado. Tente novamente.")
        elif isinstance(error, telegram.error.NetworkError):
            logger.error("Problema de conexão com a API do Telegram")
        else:
            await safe_send_message(context, chat_id, "❌ Ocorreu um erro inesperado.")
    except telegram.error.TelegramError as inner_error:
        logger.error(f"Erro no handler de erros: {str(inner_error)}", exc_info=True)


async def safe_send_message(
    context: CallbackContext,
    chat_id: int,
    text: str,
    **kwargs
) -> None:
    """Envio de mensagens com retry em timeout e falhas de rede."""
    max_retries = 3
    parse_mode = kwargs.pop('parse_mode', 'HTML')

    for attempt in range(max_retries):
        try:
            await context.bot.send_message(chat_id=chat_id, text=text, parse_mode=parse_mode, **kwargs)
            return
        except telegram.error.TimedOut:
            if attempt == max_retries - 1:
                logger.error(f"Falha ao enviar mensagem após {max_retries} tentativas")
                raise
        except telegram.error.NetworkError as e:
            logger.warning(f"Problema de rede ao enviar mensagem (tentativa {attempt + 1}): {str(e)}")
            if attempt == max_retries - 1:
                raise
            await asyncio.sleep(2 ** attempt)


def main() -> None:
    """Carrega o histórico, registra os handlers e inicia o polling."""
    global bot

    TOKEN = _get_bot_token()
    if not TOKEN:
        logger.critical(
            "Token do Telegram não encontrado nas variáveis de ambiente. "
            "Configure TELEGRAM_BOT_TOKEN (ou BOT_TOKEN/TOKEN)."
        )
        sys.exit(1)

    bot = BotLotofacil()
    if not bot.carregar_dados():
        logger.warning("Bot iniciado sem análise disponível; use /inserir ou corrija o histórico")

    application = ApplicationBuilder().token(TOKEN).build()
    application.add_handlers([
        CommandHandler("start", start),
        CommandHandler("analise", comando_analise),
        CommandHandler("atrasos", comando_atrasos),
        CommandHandler("aposta", comando_aposta),
        CommandHandler("backtest", comando_backtest),
        CommandHandler("inserir", comando_inserir),
        CommandHandler("config", comando_config),
        CommandHandler("ajuste", comando_ajuste),
        CommandHandler("resumo", comando_resumo),
    ])
    application.add_error_handler(error_handler)

    logger.info("✅ Bot inicializado (PTB v20+)")
    application.run_polling(poll_interval=1.0, allowed_updates=Update.ALL_TYPES)

if __name__ == '__main__':
    with contextlib.suppress(KeyboardInterrupt):
        main()
    logger.info("Encerrando o bot...")
