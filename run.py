import os
import sys


def _ensure_src_in_path() -> None:
    """Garantiza que la carpeta 'src' esté en sys.path para imports absolutos.
    Permite ejecutar ``python run.py --order 1`` sin instalar el paquete.
    """
    base_dir = os.path.dirname(os.path.abspath(__file__))
    src_dir = os.path.join(base_dir, 'src')
    if src_dir not in sys.path:
        sys.path.insert(0, src_dir)


def main() -> int:
    _ensure_src_in_path()
    from order_change.__main__ import main as app_main  # type: ignore
    return app_main()


if __name__ == '__main__':
    sys.exit(main())
