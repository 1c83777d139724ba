import sys
import runpy

# debugpy puts the real arguments after "--"
if "--" in sys.argv:
    args = sys.argv[sys.argv.index("--") + 1 :]
else:
    args = sys.argv[1:]

# give Typer a clean argv
sys.argv = ["pyaether"] + args

# same as: python -m pyaether ...
runpy.run_module("pyaether", run_name="__main__")
