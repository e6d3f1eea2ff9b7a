from __future__ import annotations

from collections import defaultdict
from functools import lru_cache

from fractal_graph.app.models.node_definition import InputSpec, NodeCategory, NodeDefinition


class NodeRegistry:
    def __init__(self, definitions: list[NodeDefinition] | None = None) -> None:
        source = definitions if definitions is not None else self._load_builtin_definitions()
        self._definitions: dict[str, NodeDefinition] = {}
        for definition in source:
            if definition.id in self._definitions:
                raise ValueError(f"Node type '{definition.id}' is registered more than once")
            self._definitions[definition.id] = definition

    def __contains__(self, type_id: object) -> bool:
        return type_id in self._definitions

    def list_definitions(self, category: NodeCategory | str | None = None) -> list[NodeDefinition]:
        definitions = list(self._definitions.values())
        if category:
            definitions = [definition for definition in definitions if definition.category == category]
        return sorted(definitions, key=lambda item: (item.category, item.id))

    def get(self, type_id: str) -> NodeDefinition | None:
        return self._definitions.get(type_id)

    def categories(self) -> dict[str, int]:
        counters: dict[str, int] = defaultdict(int)
        for definition in self._definitions.values():
            counters[definition.category.value] += 1
        return dict(sorted(counters.items(), key=lambda kv: kv[0]))

    @staticmethod
    def _load_builtin_definitions() -> list[NodeDefinition]:
        return [
            NodeDefinition(
                id="Note",
                label="Comment / Note",
                category=NodeCategory.UTILS,
                description="A text block for leaving comments. Ignored by the renderer.",
            ),
            NodeDefinition(
                id="AddConstant",
                label="Add C (Julia/Pixel)",
                category=NodeCategory.UTILS,
                description="Adds the Julia constant (or pixel coordinate) to the position.",
                inputs=[InputSpec(id="scale", label="Strength", min=0.0, max=2.0, step=0.01, default=1.0)],
                template="${out}_p += c.xyz * ${scale};",
            ),
            NodeDefinition(
                id="Scale",
                label="Scale (Mult)",
                category=NodeCategory.TRANSFORMS,
                description="Plain multiplication. Use IFS Scale to keep fractals centered.",
                inputs=[
                    InputSpec(id="scale", label="Scale", min=0.1, max=5.0, step=0.01, default=2.0, hard_min=0.001),
                ],
                template="${out}_p *= ${scale};\n${out}_dr *= abs(${scale});",
            ),
            NodeDefinition(
                id="IFSScale",
                label="IFS Scale (Homothety)",
                category=NodeCategory.TRANSFORMS,
                description="Scales space while shifting to keep a center. Used by Menger and Sierpinski.",
                inputs=[
                    InputSpec(id="scale", label="Scale", min=1.0, max=5.0, step=0.01, default=2.0),
                    InputSpec(id="offset", label="Offset", min=0.0, max=5.0, step=0.01, default=1.0),
                ],
                template="\n".join(
                    [
                        "{",
                        "    float scale = ${scale};",
                        "    float off = ${offset};",
                        "    ${out}_p = ${out}_p * scale - vec3(off * (scale - 1.0));",
                        "    ${out}_dr *= abs(scale);",
                        "}",
                    ]
                ),
            ),
            NodeDefinition(
                id="Rotate",
                label="Rotate",
                category=NodeCategory.TRANSFORMS,
                description="Rotates space around the X, Y and Z axes (degrees).",
                inputs=[
                    InputSpec(id="x", label="Rot X", min=-180, max=180, step=1, default=0),
                    InputSpec(id="y", label="Rot Y", min=-180, max=180, step=1, default=0),
                    InputSpec(id="z", label="Rot Z", min=-180, max=180, step=1, default=0),
                ],
                template="\n".join(
                    [
                        "{",
                        "    vec3 rot = vec3(radians(${x}), radians(${y}), radians(${z}));",
                        "    if(abs(rot.x)>0.001) { float s=sin(rot.x); float c=cos(rot.x); "
                        "mat2 m=mat2(c,-s,s,c); ${out}_p.yz = m*${out}_p.yz; }",
                        "    if(abs(rot.y)>0.001) { float s=sin(rot.y); float c=cos(rot.y); "
                        "mat2 m=mat2(c,-s,s,c); ${out}_p.xz = m*${out}_p.xz; }",
                        "    if(abs(rot.z)>0.001) { float s=sin(rot.z); float c=cos(rot.z); "
                        "mat2 m=mat2(c,-s,s,c); ${out}_p.xy = m*${out}_p.xy; }",
                        "}",
                    ]
                ),
            ),
            NodeDefinition(
                id="Translate",
                label="Translate",
                category=NodeCategory.TRANSFORMS,
                description="Linear shift of coordinates.",
                inputs=[
                    InputSpec(id="x", label="X", min=-5, max=5, step=0.01, default=0),
                    InputSpec(id="y", label="Y", min=-5, max=5, step=0.01, default=0),
                    InputSpec(id="z", label="Z", min=-5, max=5, step=0.01, default=0),
                ],
                template="${out}_p += vec3(${x}, ${y}, ${z});",
            ),
            NodeDefinition(
                id="Mod",
                label="Modulo (Repeat)",
                category=NodeCategory.TRANSFORMS,
                description="Tiles space infinitely in a grid. A zero period disables that axis.",
                inputs=[
                    InputSpec(id="x", label="X Period", min=0, max=10, step=0.1, default=0),
                    InputSpec(id="y", label="Y Period", min=0, max=10, step=0.1, default=0),
                    InputSpec(id="z", label="Z Period", min=0, max=10, step=0.1, default=0),
                ],
                template="\n".join(
                    [
                        "{",
                        "    vec3 per = vec3(${x}, ${y}, ${z});",
                        "    if(abs(per.x)>0.001) ${out}_p.x = mod(${out}_p.x + 0.5*per.x, per.x) - 0.5*per.x;",
                        "    if(abs(per.y)>0.001) ${out}_p.y = mod(${out}_p.y + 0.5*per.y, per.y) - 0.5*per.y;",
                        "    if(abs(per.z)>0.001) ${out}_p.z = mod(${out}_p.z + 0.5*per.z, per.z) - 0.5*per.z;",
                        "}",
                    ]
                ),
            ),
            NodeDefinition(
                id="AmazingFold",
                label="Amazing Fold",
                category=NodeCategory.FOLDS,
                description="Box fold followed by sphere fold, without the scale or the C offset.",
                inputs=[
                    InputSpec(id="limit", label="Box Limit", min=0.1, max=3.0, step=0.01, default=1.0),
                    InputSpec(id="minR", label="Min Radius", min=0.0, max=2.0, step=0.01, default=0.5),
                    InputSpec(id="fixedR", label="Fixed Radius", min=0.0, max=3.0, step=0.01, default=1.0),
                ],
                template=(
                    "boxFold(${out}_p, ${out}_dr, ${limit});\n"
                    "sphereFold(${out}_p, ${out}_dr, ${minR}, ${fixedR});"
                ),
            ),
            NodeDefinition(
                id="Abs",
                label="Abs (Mirror)",
                category=NodeCategory.FOLDS,
                description="Absolute value fold on all axes.",
                template="${out}_p = abs(${out}_p);",
            ),
            NodeDefinition(
                id="BoxFold",
                label="Box Fold",
                category=NodeCategory.FOLDS,
                description="Clamps space inside a box limit. The core of the Mandelbox.",
                inputs=[
                    InputSpec(id="limit", label="Limit", min=0.1, max=3.0, step=0.01, default=1.0, hard_min=0.001),
                ],
                template="boxFold(${out}_p, ${out}_dr, ${limit});",
            ),
            NodeDefinition(
                id="SphereFold",
                label="Sphere Fold",
                category=NodeCategory.FOLDS,
                description="Inverts space inside a sphere.",
                inputs=[
                    InputSpec(id="minR", label="Min Radius", min=0.0, max=2.0, step=0.01, default=0.5),
                    InputSpec(id="fixedR", label="Fixed Radius", min=0.0, max=3.0, step=0.01, default=1.0),
                ],
                template="sphereFold(${out}_p, ${out}_dr, ${minR}, ${fixedR});",
            ),
            NodeDefinition(
                id="PlaneFold",
                label="Plane Fold",
                category=NodeCategory.FOLDS,
                description="Reflects space across a plane given by a normal and an offset.",
                inputs=[
                    InputSpec(id="x", label="Normal X", min=-1, max=1, step=0.01, default=0),
                    InputSpec(id="y", label="Normal Y", min=-1, max=1, step=0.01, default=1),
                    InputSpec(id="z", label="Normal Z", min=-1, max=1, step=0.01, default=0),
                    InputSpec(id="d", label="Offset", min=-2, max=2, step=0.01, default=0),
                ],
                template="\n".join(
                    [
                        "{",
                        "    vec3 n = normalize(vec3(${x}, ${y}, ${z}));",
                        "    ${out}_p -= 2.0 * min(0.0, dot(${out}_p, n) - ${d}) * n;",
                        "}",
                    ]
                ),
            ),
            NodeDefinition(
                id="MengerFold",
                label="Menger Fold",
                category=NodeCategory.FOLDS,
                description="Sorts the xyz coordinates. Essential for Menger sponges.",
                template="\n".join(
                    [
                        "if(${out}_p.x < ${out}_p.y) ${out}_p.xy = ${out}_p.yx;",
                        "if(${out}_p.x < ${out}_p.z) ${out}_p.xz = ${out}_p.zx;",
                        "if(${out}_p.y < ${out}_p.z) ${out}_p.yz = ${out}_p.zy;",
                    ]
                ),
            ),
            NodeDefinition(
                id="SierpinskiFold",
                label="Sierpinski Fold",
                category=NodeCategory.FOLDS,
                description="Diagonal folding for tetrahedral fractals.",
                template="\n".join(
                    [
                        "if(${out}_p.x + ${out}_p.y < 0.0) ${out}_p.xy = -${out}_p.yx;",
                        "if(${out}_p.x + ${out}_p.z < 0.0) ${out}_p.xz = -${out}_p.zx;",
                        "if(${out}_p.y + ${out}_p.z < 0.0) ${out}_p.yz = -${out}_p.zy;",
                    ]
                ),
            ),
            NodeDefinition(
                id="Mandelbulb",
                label="Mandelbulb",
                category=NodeCategory.FRACTALS,
                description="The standard power function with phase shifts and a Z twist.",
                inputs=[
                    InputSpec(id="power", label="Power", min=1, max=16, step=0.1, default=8.0),
                    InputSpec(id="phaseX", label="Phi Phase", min=-3.14, max=3.14, step=0.01, default=0.0),
                    InputSpec(id="phaseY", label="Theta Phase", min=-3.14, max=3.14, step=0.01, default=0.0),
                    InputSpec(id="twist", label="Z Twist", min=-2.0, max=2.0, step=0.01, default=0.0),
                ],
                template="\n".join(
                    [
                        "{",
                        "    vec3 p = ${out}_p;",
                        "    float r = length(p);",
                        "    float power = ${power};",
                        "    ${out}_dr = pow(max(r, 1e-5), power - 1.0) * power * ${out}_dr + 1.0;",
                        "    float theta = acos(clamp(p.z / r, -1.0, 1.0));",
                        "    float phi = atan(p.y, p.x);",
                        "    theta = theta * power + ${phaseX};",
                        "    phi = phi * power + ${phaseY};",
                        "    float zr = pow(r, power);",
                        "    p = zr * vec3(sin(theta)*cos(phi), sin(phi)*sin(theta), cos(theta));",
                        "    float tw = ${twist};",
                        "    if(abs(tw) > 0.001) { float ang = p.z * tw; float s = sin(ang); float c = cos(ang); "
                        "p.xy = mat2(c,-s,s,c) * p.xy; }",
                        "    ${out}_p = p;",
                        "}",
                    ]
                ),
            ),
            NodeDefinition(
                id="Sphere",
                label="Sphere",
                category=NodeCategory.PRIMITIVES,
                description="Signed distance to a sphere.",
                inputs=[InputSpec(id="r", label="Radius", min=0.1, max=5.0, step=0.01, default=1.0)],
                template="${out}_d = length(${out}_p) - ${r};",
            ),
            NodeDefinition(
                id="Box",
                label="Box",
                category=NodeCategory.PRIMITIVES,
                description="Signed distance to a box.",
                inputs=[
                    InputSpec(id="x", label="Size X", min=0.1, max=5.0, step=0.01, default=1.0),
                    InputSpec(id="y", label="Size Y", min=0.1, max=5.0, step=0.01, default=1.0),
                    InputSpec(id="z", label="Size Z", min=0.1, max=5.0, step=0.01, default=1.0),
                ],
                template="\n".join(
                    [
                        "{",
                        "    vec3 b = vec3(${x}, ${y}, ${z});",
                        "    vec3 d = abs(${out}_p) - b;",
                        "    ${out}_d = length(max(d, 0.0)) + min(max(d.x, max(d.y, d.z)), 0.0);",
                        "}",
                    ]
                ),
            ),
            NodeDefinition(
                id="Twist",
                label="Twist (Z)",
                category=NodeCategory.DISTORTION,
                description="Twists space along the Z axis.",
                inputs=[InputSpec(id="amount", label="Amount", min=-5.0, max=5.0, step=0.01, default=1.0)],
                template="\n".join(
                    [
                        "{",
                        "    float c_tw = cos(${amount} * ${out}_p.z);",
                        "    float s_tw = sin(${amount} * ${out}_p.z);",
                        "    mat2 m_tw = mat2(c_tw, -s_tw, s_tw, c_tw);",
                        "    ${out}_p.xy = m_tw * ${out}_p.xy;",
                        "}",
                    ]
                ),
            ),
            NodeDefinition(
                id="Bend",
                label="Bend (Y)",
                category=NodeCategory.DISTORTION,
                description="Bends space along the Y axis.",
                inputs=[InputSpec(id="amount", label="Amount", min=-2.0, max=2.0, step=0.01, default=0.5)],
                template="\n".join(
                    [
                        "{",
                        "    float c_bn = cos(${amount} * ${out}_p.y);",
                        "    float s_bn = sin(${amount} * ${out}_p.y);",
                        "    mat2 m_bn = mat2(c_bn, -s_bn, s_bn, c_bn);",
                        "    ${out}_p.xz = m_bn * ${out}_p.xz;",
                        "}",
                    ]
                ),
            ),
            NodeDefinition(
                id="SineWave",
                label="Sine Wave",
                category=NodeCategory.DISTORTION,
                description="Adds a sinusoidal ripple to the position.",
                inputs=[
                    InputSpec(id="freq", label="Frequency", min=0.1, max=10.0, step=0.1, default=2.0),
                    InputSpec(id="amp", label="Amplitude", min=0.0, max=1.0, step=0.01, default=0.1),
                ],
                template="${out}_p += sin(${out}_p.yzx * ${freq}) * ${amp};",
            ),
            NodeDefinition(
                id="Union",
                label="Union",
                category=NodeCategory.COMBINERS,
                description="Combines two shapes (min).",
                template="\n".join(
                    [
                        "{",
                        "    bool winA = ${out}_d < ${in_b}_d;",
                        "    ${out}_d = winA ? ${out}_d : ${in_b}_d;",
                        "    ${out}_p = winA ? ${out}_p : ${in_b}_p;",
                        "    ${out}_dr = winA ? ${out}_dr : ${in_b}_dr;",
                        "}",
                    ]
                ),
            ),
            NodeDefinition(
                id="Subtract",
                label="Subtract",
                category=NodeCategory.COMBINERS,
                description="Carves B out of A.",
                template="\n".join(
                    [
                        "{",
                        "    float negB = -${in_b}_d;",
                        "    bool winA = ${out}_d > negB;",
                        "    ${out}_d = winA ? ${out}_d : negB;",
                        "    ${out}_p = winA ? ${out}_p : ${in_b}_p;",
                        "    ${out}_dr = winA ? ${out}_dr : ${in_b}_dr;",
                        "}",
                    ]
                ),
            ),
            NodeDefinition(
                id="Intersect",
                label="Intersect",
                category=NodeCategory.COMBINERS,
                description="Region where A and B overlap.",
                template="\n".join(
                    [
                        "{",
                        "    bool winA = ${out}_d > ${in_b}_d;",
                        "    ${out}_d = winA ? ${out}_d : ${in_b}_d;",
                        "    ${out}_p = winA ? ${out}_p : ${in_b}_p;",
                        "    ${out}_dr = winA ? ${out}_dr : ${in_b}_dr;",
                        "}",
                    ]
                ),
            ),
            NodeDefinition(
                id="SmoothUnion",
                label="Smooth Union",
                category=NodeCategory.COMBINERS,
                description="Merges shapes organically.",
                inputs=[InputSpec(id="k", label="Smoothness", min=0.01, max=2.0, step=0.01, default=0.5)],
                template="\n".join(
                    [
                        "{",
                        "    float h = clamp(0.5 + 0.5 * (${in_b}_d - ${out}_d) / ${k}, 0.0, 1.0);",
                        "    ${out}_d = mix(${in_b}_d, ${out}_d, h) - ${k} * h * (1.0 - h);",
                        "    ${out}_p = mix(${in_b}_p, ${out}_p, h);",
                        "    ${out}_dr = mix(${in_b}_dr, ${out}_dr, h);",
                        "}",
                    ]
                ),
            ),
            NodeDefinition(
                id="Mix",
                label="Mix (Lerp)",
                category=NodeCategory.COMBINERS,
                description="Linear interpolation between shapes.",
                inputs=[InputSpec(id="factor", label="Factor", min=0.0, max=1.0, step=0.01, default=0.5)],
                template="\n".join(
                    [
                        "${out}_d = mix(${out}_d, ${in_b}_d, ${factor});",
                        "${out}_p = mix(${out}_p, ${in_b}_p, ${factor});",
                        "${out}_dr = mix(${out}_dr, ${in_b}_dr, ${factor});",
                    ]
                ),
            ),
            NodeDefinition(
                id="Custom",
                label="Custom (Legacy)",
                category=NodeCategory.UTILS,
                description="Legacy node kept so older scenes still load. Emits nothing.",
            ),
        ]


@lru_cache
def get_node_registry() -> NodeRegistry:
    return NodeRegistry()
