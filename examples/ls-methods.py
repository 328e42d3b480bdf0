import sys

import dnmeta


# heading
H="===="
# indent
I="    "


def main(fpath: str):
    with open(fpath, "rb") as f:
        md = dnmeta.parse(f.read())

    warns = md.validate()
    if warns:
        print(H, "WARNINGS:")
        for w in warns:
            print(I, w)
    for t in md.types():
        print(H, t.full_name())
        for m in t.methods():
            s = f"{I}{m.name} rva=0x{m.rva:x}"
            for name, val in m.attributes or ():
                if val:
                    s += f" {name}"
            print(s)
            print(I * 2, m.signature.hex())


if __name__ == "__main__":
    for fpath in sys.argv[1:]:
        print("----------", fpath)
        main(fpath)
