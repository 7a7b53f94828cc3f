from pathlib import Path
import os
import sys

from huggingface_hub import snapshot_download
from chordfinder import config


def main() -> None:
    # Same HF cache as the local rerank stage, but force ONLINE for this script
    os.environ.update(config.HF_ENV_VARS)
    os.environ["HF_HUB_OFFLINE"] = "0"

    cache_root = Path(os.environ.get("HF_HOME", str(config.MODELS_DIR))).resolve()
    print(f"Using HF_HOME: {cache_root}")

    def fetch(repo_id: str) -> str:
        print(f"\nDownloading repo: {repo_id}")
        local_path = snapshot_download(repo_id=repo_id, local_files_only=False)
        print(f"Cached at: {local_path}")

        cfg = Path(local_path) / "config.json"
        if cfg.exists():
            print(f"  ✅ Found config.json at: {cfg}")
        else:
            print(f"  ⚠️  WARNING: config.json NOT found in: {local_path}")
        return local_path

    # Explicit ids on the command line win; otherwise the configured local
    # reranker, falling back to the open model used by the hosted stage.
    repos = sys.argv[1:] or [config.RERANK_LOCAL_MODEL or config.HF_RERANK_MODEL]
    paths = [fetch(repo) for repo in repos]

    print("\nSummary:")
    for repo, path in zip(repos, paths):
        print(f"  {repo} cached at: {path}")
    print("\n✅ Finished downloading reranker models for offline use.")


if __name__ == "__main__":
    main()
