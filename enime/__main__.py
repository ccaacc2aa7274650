from enime.main import run_with_uvicorn

if __name__ == "__main__":
    run_with_uvicorn()
