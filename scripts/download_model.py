import os
import sys
from huggingface_hub import snapshot_download, login

MODEL_ID = os.environ.get("RAGINDEX_EMBEDDING_MODEL", "sentence-transformers/all-MiniLM-L6-v2")
TARGET_DIR = os.path.abspath(os.path.join(
    os.path.dirname(__file__), "../resources/models", MODEL_ID.split("/")[-1]
))

def download_model():
    print(f"Downloading {MODEL_ID} to {TARGET_DIR}...")

    try:
        snapshot_download(
            repo_id=MODEL_ID,
            local_dir=TARGET_DIR,
            ignore_patterns=["*.git*", "*.msgpack", "*.h5", "*.onnx", "openvino/*"]
        )
        print("✓ Model downloaded successfully!")
        print(f"Point the indexer at it with: RAGINDEX_EMBEDDING_MODEL={TARGET_DIR}")

    except Exception as e:
        print("\n❌ Error downloading model.")
        print(f"Details: {e}")

        if "401" in str(e) or "gated" in str(e).lower():
            print("\nAuthentication required:")
            token = input("Please paste your HF Access Token here: ").strip()

            if token:
                print("Logging in...")
                login(token=token)
                print("Retrying download...")
                snapshot_download(repo_id=MODEL_ID, local_dir=TARGET_DIR)
                print("✓ Model downloaded successfully!")
            else:
                print("Skipped. Model not downloaded.")
        else:
            sys.exit(1)

if __name__ == "__main__":
    download_model()
