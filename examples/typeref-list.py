#!/usr/bin/env python3
#
# List the TypeRef table of raw metadata blobs (starting with BSJB).

import sys

import dnmeta

for fname in sys.argv[1:]:
    # load metadata
    with open(fname, "rb") as f:
        md = dnmeta.parse(f.read())
    # for each entry in the TypeRef table
    for ref in md.type_refs():
        scope = ref.resolution_scope
        # if the ResolutionScope includes a reference to another table
        if scope is not None:
            # resolve it to a string
            row = md.get_table(scope.table).get_with_row_index(scope.row_index)
            name_index = getattr(row, "Name", None) or getattr(row, "TypeName", 0)
            print(ref.full_name(), scope.table_name, md.strings.get_str(name_index))
        else:
            print(ref.full_name())
