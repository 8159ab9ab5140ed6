"""
発音評価アプリ - メインエントリーポイント
単語・文・段落の音読を録音（または音声ファイル）から評価し、練習記録を保存する
"""
import asyncio
import logging
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from pydub.exceptions import CouldntDecodeError

from app.config import APP_DATA_DIR, ISESettings, setup_logging
from app.models.schemas import EvaluationCategory, EvaluationRequest, EvaluationResult
from app.services.api_check_service import APICheckService
from app.services.evaluation_service import EvaluationService
from app.services.exceptions import EvaluationError
from app.services.result_parser import describe_error
from app.services.score_aggregator import score_level
from app.services.storage_service import LocalStorageService

# .envファイルの読み込み（実行ファイルのディレクトリまたはカレントディレクトリから）
if getattr(sys, 'frozen', False):
    # PyInstallerでビルドされた場合
    application_path = Path(sys.executable).parent
else:
    # 開発環境の場合
    application_path = Path(__file__).parent

env_path = application_path / ".env"
if env_path.exists():
    load_dotenv(env_path)
else:
    load_dotenv()


LEVEL_LABELS: dict[str, str] = {
    "excellent": "優秀",
    "good": "良好",
    "pass": "合格",
    "fail": "要改善",
}


def _format_score(score: float | None) -> str:
    return "-" if score is None else f"{score:.1f}"


def print_result(result: EvaluationResult) -> None:
    """評価結果をテキストで表示"""
    level: str = LEVEL_LABELS[score_level(result.total_score)]
    click.echo(f"総合スコア: {_format_score(result.total_score)} ({level})")
    if result.is_rejected:
        click.echo("⚠️ 乱読が検出されました。スコアは参考値です")
    click.echo(
        f"  正確性: {_format_score(result.accuracy_score)}"
        f"  流暢さ: {_format_score(result.fluency_score)}"
        f"  標準度: {_format_score(result.standard_score)}"
        f"  完全性: {_format_score(result.integrity_score)}"
    )
    for index, sentence in enumerate(result.sentences, start=1):
        click.echo(f"文 {index}: {_format_score(sentence.total_score)}  {sentence.content}")
        for word in sentence.words:
            click.echo(
                f"    {word.content:<20} {_format_score(word.total_score):>6}"
                f"  {describe_error(word.dp_message)}"
            )


def run_evaluation(
    category: EvaluationCategory,
    text: str,
    audio_file: Path | None,
    duration: float,
    save: bool,
) -> None:
    """評価を実行して結果を表示"""
    request = EvaluationRequest(category=category, reference_text=text)
    storage = LocalStorageService() if save else None

    def on_progress(count: int) -> None:
        click.echo(f"中間結果を受信しました（{count}）")

    try:
        service = EvaluationService(storage=storage)
        if audio_file is not None:
            result = asyncio.run(service.evaluate_file(request, audio_file, on_progress))
        else:
            click.echo(f"{duration:g}秒間録音します。読み上げてください: {text}")
            result = asyncio.run(service.evaluate_microphone(request, duration, on_progress))
    except EvaluationError as e:
        raise click.ClickException(f"評価に失敗しました: {e}") from e
    except (CouldntDecodeError, OSError) as e:
        raise click.ClickException(f"音声を読み込めませんでした: {e}") from e
    except RuntimeError as e:
        raise click.ClickException(f"録音を開始できませんでした: {e}") from e

    print_result(result)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="詳細なログを表示")
def cli(verbose: bool) -> None:
    """発音評価アプリ"""
    APP_DATA_DIR.mkdir(parents=True, exist_ok=True)
    setup_logging(logging.DEBUG if verbose else logging.WARNING)


def _evaluation_command(category: EvaluationCategory, name: str, help_text: str) -> click.Command:
    @click.command(name=name, help=help_text)
    @click.argument("text")
    @click.option("--file", "audio_file", type=click.Path(exists=True, dir_okay=False, path_type=Path),
                  help="評価する音声ファイル（指定しない場合はマイクから録音）")
    @click.option("--duration", default=5.0, show_default=True, help="録音時間（秒）")
    @click.option("--no-save", is_flag=True, help="練習記録を保存しない")
    def command(text: str, audio_file: Path | None, duration: float, no_save: bool) -> None:
        run_evaluation(category, text, audio_file, duration, save=not no_save)

    return command


cli.add_command(_evaluation_command(EvaluationCategory.WORD, "word", "単語の発音を評価"))
cli.add_command(_evaluation_command(EvaluationCategory.SENTENCE, "sentence", "文の発音を評価"))
cli.add_command(_evaluation_command(EvaluationCategory.CHAPTER, "chapter", "段落の発音を評価"))


@cli.command()
@click.option("--type", "practice_type", type=click.Choice(["word", "sentence", "paragraph"]))
@click.option("--limit", default=20, show_default=True)
@click.option("--offset", default=0, show_default=True)
def history(practice_type: str | None, limit: int, offset: int) -> None:
    """練習履歴を表示"""
    page = LocalStorageService().list_practice_history(practice_type, limit, offset)
    click.echo(f"全{page['total']}件")
    for record in page["records"]:
        click.echo(
            f"{record.created_at:%Y-%m-%d %H:%M}  {record.type:<9} "
            f"{record.total_score:>6.1f}  {record.content[:40]}"
        )


@cli.command()
def stats() -> None:
    """練習統計を表示"""
    result = LocalStorageService().get_practice_stats()
    click.echo(f"練習回数: {result.total_count}  合計時間: {result.total_duration}秒")
    click.echo(f"平均スコア: {result.average_score:.2f}  最高スコア: {result.best_score:.2f}")
    for practice_type, type_stats in result.by_type.items():
        click.echo(f"  {practice_type:<9} {type_stats.count}回  平均 {type_stats.avg_score:.1f}")
    for day in result.recent_7_days:
        click.echo(f"  {day.date}: {day.count}回")


@cli.command()
@click.option("--connect", is_flag=True, help="実際に接続して確認")
def check(connect: bool) -> None:
    """APIの設定と接続状態を確認"""
    results = asyncio.run(APICheckService(ISESettings()).check_all_apis(connect=connect))
    for item in results:
        click.echo(f"{item['name']}: {item['status']} - {item['message']}")


if __name__ == "__main__":
    cli()
