"""
Point d'entrée en ligne de commande.

    python -m doc_translator                      # sert l'API HTTP
    python -m doc_translator --port 8080
    python -m doc_translator --file notes.txt --target fr --provider google
"""

import argparse
import sys
from dataclasses import replace
from pathlib import Path
from typing import Optional

from .config import load_env_overrides, lock_config
from .errors import TranslatorError
from .logger import get_logger
from .models import PipelineConfig, ProviderConfig
from .service import TranslationService

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="doc_translator",
        description="Traduction de documents longs par chunks",
    )
    parser.add_argument("--host", default="127.0.0.1", help="Adresse d'écoute de l'API")
    parser.add_argument("--port", type=int, default=5055, help="Port de l'API")
    parser.add_argument("--debug", action="store_true", help="Mode debug Flask")

    group = parser.add_argument_group("traduction d'un fichier")
    group.add_argument("--file", type=Path, help="Fichier texte (.txt) ou HTML à traduire")
    group.add_argument("--output", type=Path, help="Fichier de sortie (défaut: <nom>_<langue>.txt)")
    group.add_argument("--source", default="auto", help="Langue source (défaut: auto)")
    group.add_argument("--target", help="Langue cible (ex: fr)")
    group.add_argument("--provider", default="google", help="local, google, deepl ou openai")
    group.add_argument("--api-key", help="Clé API (sinon lue depuis .env)")
    group.add_argument("--max-tokens", type=int, help="Taille maximale d'un chunk")
    group.add_argument("--llm", action="store_true", help="Active le pipeline d'amélioration LLM")
    group.add_argument("--llm-model", help="Modèle du pipeline LLM (défaut: llama3.1:8b)")
    return parser


def translate_file(service: TranslationService, args: argparse.Namespace) -> int:
    if not args.target:
        print("❌ --target est requis avec --file", file=sys.stderr)
        return 2

    content = args.file.read_text(encoding="utf-8")
    is_html = args.file.suffix.lower() in (".html", ".htm", ".xhtml")

    pipeline = PipelineConfig(enabled=args.llm)
    if args.llm_model:
        pipeline = PipelineConfig(enabled=args.llm, default_model=args.llm_model)

    job = service.upload(
        args.file.name,
        text=None if is_html else content,
        html=content if is_html else None,
        source_language=args.source,
        target_language=args.target,
        api_provider=args.provider,
        max_tokens=args.max_tokens,
        api_key=args.api_key,
        enhancement=pipeline,
    )
    config = ProviderConfig.from_env(args.provider)
    config = replace(
        config,
        api_key=args.api_key or config.api_key,
        html_mode=is_html,
        enhancement=pipeline,
    )

    print(f"\n📄 Source : {args.file}")
    print(f"🎯 Langue : {args.source} → {args.target}")
    print(f"🌐 Fournisseur : {config.provider_name}")
    print(f"✂️ Chunks : {job.total_chunks}\n")

    job = service.translate_sync(job.id, config)
    document = service.generate(job.id)

    output = args.output or args.file.with_name(f"{args.file.stem}_{args.target}.txt")
    output.write_text(document.text, encoding="utf-8")
    print(f"💾 Sortie : {output}")
    if document.is_partial:
        print(f"⚠️ Document partiel, chunks manquants : {document.missing_chunks}")
        return 1
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    load_env_overrides()
    lock_config()

    service = TranslationService()
    try:
        if args.file:
            return translate_file(service, args)

        from .web import create_app

        app = create_app(service)
        service.start()
        logger.info(f"🌐 API démarrée sur http://{args.host}:{args.port}")
        app.run(host=args.host, port=args.port, debug=args.debug, threaded=True)
        return 0
    except TranslatorError as e:
        print(f"❌ {e.code}: {e.message}", file=sys.stderr)
        return 1
    finally:
        service.stop()


if __name__ == "__main__":
    sys.exit(main())
